"""
Due-diligence checklist models - templates and per-onboarding instances.

Two families of tables:

    Template (immutable, versioned)
        ChecklistTemplate ─┬─ ChecklistTemplateSection ─┬─ ChecklistTemplateItem
                           │                            └─ ...
    Instance (mutable copy owned by one Onboarding)
        ChecklistInstance ─┬─ ChecklistSectionInstance ─┬─ ChecklistItemInstance ─┬─ ChecklistItemNote

Business rules:
- A template is identified by (checklist_type, version_number) and is never
  updated or deleted once flushed. A new version is a new row.
- Every template item carries a stable ``key`` assigned at publication.
  Instance items copy it so updates can address items without relying on
  (section title, item title).
- Item notes are an append-only ledger: one row per note, never updated
  or deleted.
- ChecklistInstance.revision increments once per applied update batch.
"""

from datetime import datetime, timezone

from sqlalchemy import event

from onboarding_desk.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

NOT_STARTED = "NOT_STARTED"
IN_PROGRESS = "IN_PROGRESS"
SATISFACTORY = "SATISFACTORY"
ADVERSE = "ADVERSE"

ITEM_STATUSES = (NOT_STARTED, IN_PROGRESS, SATISFACTORY, ADVERSE)
VALID_ITEM_STATUSES = frozenset(ITEM_STATUSES)

# An item counts as reviewed once it has left NOT_STARTED / IN_PROGRESS.
REVIEWED_STATUSES = frozenset({SATISFACTORY, ADVERSE})

VALID_CHECK_TYPES = frozenset({"MANUAL", "AUTOMATED"})

# Checklist types shipped with the seed data. Other upper-case identifiers
# (e.g. "KYC") may be published by an administrator.
ONBOARDING_CHECKLIST = "ONBOARDING"
DEAL_PROCESSING_CHECKLIST = "DEAL_PROCESSING"


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# Templates
# ═════════════════════════════════════════════════════════════════════════════


class ChecklistTemplate(db.Model):
    """Published, immutable checklist definition."""

    __tablename__ = "checklist_templates"

    id = db.Column(db.Integer, primary_key=True)
    checklist_type = db.Column(
        db.String(50),
        nullable=False,
        comment="ONBOARDING | DEAL_PROCESSING | KYC | ...",
    )
    version_number = db.Column(db.Integer, nullable=False)
    title = db.Column(db.String(255), nullable=True)
    published_by = db.Column(db.String(100), nullable=True)
    published_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    sections = db.relationship(
        "ChecklistTemplateSection",
        backref="template",
        order_by="ChecklistTemplateSection.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        db.UniqueConstraint("checklist_type", "version_number", name="uq_checklist_template_version"),
    )

    @property
    def items(self):
        return [item for section in self.sections for item in section.items]

    def to_dict(self, include_sections=True):
        data = {
            "id": self.id,
            "checklistType": self.checklist_type,
            "versionNumber": self.version_number,
            "title": self.title,
            "publishedBy": self.published_by,
            "publishedAt": _iso(self.published_at),
        }
        if include_sections:
            data["sections"] = [s.to_dict() for s in self.sections]
        return data

    def __repr__(self):
        return f"<ChecklistTemplate {self.checklist_type} v{self.version_number}>"


class ChecklistTemplateSection(db.Model):
    __tablename__ = "checklist_template_sections"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer,
        db.ForeignKey("checklist_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    title = db.Column(db.String(255), nullable=False)
    guidance = db.Column(db.Text, nullable=True)

    items = db.relationship(
        "ChecklistTemplateItem",
        backref="section",
        order_by="ChecklistTemplateItem.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "guidance": self.guidance,
            "items": [i.to_dict() for i in self.items],
        }


class ChecklistTemplateItem(db.Model):
    __tablename__ = "checklist_template_items"

    id = db.Column(db.Integer, primary_key=True)
    section_id = db.Column(
        db.Integer,
        db.ForeignKey("checklist_template_sections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    key = db.Column(
        db.String(120),
        nullable=False,
        comment="Stable identifier, unique within the template",
    )
    title = db.Column(db.String(255), nullable=False)
    guidance = db.Column(db.Text, nullable=True)
    check_type = db.Column(db.String(20), nullable=False, default="MANUAL")

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "title": self.title,
            "guidance": self.guidance,
            "checkType": self.check_type,
        }


@event.listens_for(ChecklistTemplate, "before_update")
@event.listens_for(ChecklistTemplateSection, "before_update")
@event.listens_for(ChecklistTemplateItem, "before_update")
def _reject_template_update(mapper, connection, target):
    raise RuntimeError(f"{type(target).__name__} is immutable once published")


@event.listens_for(ChecklistTemplate, "before_delete")
def _reject_template_delete(mapper, connection, target):
    raise RuntimeError("ChecklistTemplate is immutable once published")


# ═════════════════════════════════════════════════════════════════════════════
# Instances
# ═════════════════════════════════════════════════════════════════════════════


class ChecklistInstance(db.Model):
    """Per-onboarding working copy of a template."""

    __tablename__ = "checklist_instances"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer,
        db.ForeignKey("checklist_templates.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    checklist_type = db.Column(db.String(50), nullable=False)
    version_number = db.Column(db.Integer, nullable=False)
    revision = db.Column(
        db.Integer,
        nullable=False,
        default=0,
        comment="Incremented once per applied update batch (If-Match guard)",
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    sections = db.relationship(
        "ChecklistSectionInstance",
        backref="instance",
        order_by="ChecklistSectionInstance.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def items(self):
        return [item for section in self.sections for item in section.items]

    def to_dict(self):
        return {
            "id": self.id,
            "checklistType": self.checklist_type,
            "version": self.version_number,
            "revision": self.revision,
            "sections": [s.to_dict() for s in self.sections],
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ChecklistInstance #{self.id} {self.checklist_type} v{self.version_number} r{self.revision}>"


class ChecklistSectionInstance(db.Model):
    __tablename__ = "checklist_section_instances"

    id = db.Column(db.Integer, primary_key=True)
    instance_id = db.Column(
        db.Integer,
        db.ForeignKey("checklist_instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    title = db.Column(db.String(255), nullable=False)
    guidance = db.Column(db.Text, nullable=True)

    items = db.relationship(
        "ChecklistItemInstance",
        backref="section",
        order_by="ChecklistItemInstance.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "guidance": self.guidance,
            "items": [i.to_dict() for i in self.items],
        }


class ChecklistItemInstance(db.Model):
    __tablename__ = "checklist_item_instances"

    id = db.Column(db.Integer, primary_key=True)
    section_id = db.Column(
        db.Integer,
        db.ForeignKey("checklist_section_instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    key = db.Column(db.String(120), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    guidance = db.Column(db.Text, nullable=True)
    check_type = db.Column(db.String(20), nullable=False, default="MANUAL")
    status = db.Column(
        db.String(20),
        nullable=False,
        default=NOT_STARTED,
        comment="NOT_STARTED | IN_PROGRESS | SATISFACTORY | ADVERSE",
    )
    status_updated_by = db.Column(db.String(100), nullable=True)
    status_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.relationship(
        "ChecklistItemNote",
        backref="item",
        order_by="ChecklistItemNote.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def is_reviewed(self):
        return self.status in REVIEWED_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "title": self.title,
            "guidance": self.guidance,
            "checkType": self.check_type,
            "status": self.status,
            "notes": [n.to_dict() for n in self.notes],
        }


class ChecklistItemNote(db.Model):
    """One entry of an item's append-only note ledger."""

    __tablename__ = "checklist_item_notes"

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(
        db.Integer,
        db.ForeignKey("checklist_item_instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    text = db.Column(db.Text, nullable=False)
    user_id = db.Column(db.String(100), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "note": self.text,
            "user": self.user_id,
            "createdAt": _iso(self.created_at),
        }


@event.listens_for(ChecklistItemNote, "before_update")
def _reject_note_update(mapper, connection, target):
    raise RuntimeError("ChecklistItemNote is append-only")
