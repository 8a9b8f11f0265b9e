"""Outbound HTTP clients."""

from onboarding_desk.integrations.onboarding_api_gateway import GatewayConfig, OnboardingApiGateway

__all__ = ["GatewayConfig", "OnboardingApiGateway"]
