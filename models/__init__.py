"""Core data models for complaints, engagement, notifications and actors."""
import uuid
from datetime import datetime

from flask_login import UserMixin

from extensions import db


def generate_uuid() -> str:
	return str(uuid.uuid4())


DEPARTMENTS: tuple[str, ...] = (
	"Roads & Infrastructure",
	"Sanitation & Waste",
	"Street Lighting",
	"Water Supply",
	"Parks & Gardens",
	"General",
)

COMPLAINT_STATUSES: tuple[str, ...] = (
	"Pending",
	"In Progress",
	"Resolved",
	"Overdue",
	"Escalated",
)

USER_ROLES: tuple[str, ...] = (
	"citizen",
	"department",
	"admin",
)

NOTIFICATION_TYPES: tuple[str, ...] = (
	"status_update",
	"new_complaint",
	"escalation",
	"resolution",
	"rating_request",
	"sla_warning",
)

ESCALATION_LEVELS: tuple[int, ...] = (0, 1, 2)


def _in_clause(column: str, values: tuple[str, ...]) -> str:
	quoted = ",".join(f"'{value}'" for value in values)
	return f"{column} IN ({quoted})"


def _isoformat(value: datetime | None) -> str | None:
	return value.isoformat() if value else None


class User(UserMixin, db.Model):
	"""Actor record; credentials live with the identity provider."""

	__tablename__ = "users"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	name = db.Column(db.String(150), nullable=False)
	email = db.Column(db.String(255), unique=True, nullable=False, index=True)
	phone = db.Column(db.String(32), nullable=True)
	role = db.Column(db.String(20), nullable=False, default="citizen", index=True)
	department = db.Column(db.String(60), nullable=False, default="General", index=True)
	city = db.Column(db.String(120), nullable=True)
	civic_points = db.Column(db.Integer, nullable=False, default=0)
	average_rating = db.Column(db.Float, nullable=False, default=0.0)
	total_ratings = db.Column(db.Integer, nullable=False, default=0)
	is_active = db.Column(db.Boolean, default=True, nullable=False)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

	__table_args__ = (
		db.CheckConstraint(_in_clause("role", USER_ROLES), name="ck_user_role_valid"),
		db.CheckConstraint(_in_clause("department", DEPARTMENTS), name="ck_user_department_valid"),
		db.CheckConstraint("civic_points >= 0", name="ck_user_points_non_negative"),
	)

	notifications = db.relationship("Notification", back_populates="recipient", lazy="dynamic")

	@property
	def is_admin(self) -> bool:
		return self.role == "admin"

	@property
	def is_department(self) -> bool:
		return self.role == "department"

	@property
	def active(self) -> bool:  # Flask-Login compatibility alias
		return self.is_active

	def summary_payload(self) -> dict:
		return {
			"id": self.id,
			"name": self.name,
			"role": self.role,
			"department": self.department,
			"civicPoints": self.civic_points,
			"averageRating": round(self.average_rating or 0.0, 2),
			"totalRatings": self.total_ratings,
		}


class Complaint(db.Model):
	__tablename__ = "complaints"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	title = db.Column(db.String(150), nullable=False)
	description = db.Column(db.Text, nullable=False)
	department = db.Column(db.String(60), nullable=False, index=True)
	status = db.Column(db.String(20), nullable=False, default="Pending", index=True)
	emergency = db.Column(db.Boolean, nullable=False, default=False, index=True)
	citizen_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
	assigned_to_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True, index=True)
	city = db.Column(db.String(120), nullable=True, index=True)
	address = db.Column(db.String(500), nullable=False, default="")
	latitude = db.Column(db.Float, nullable=True)
	longitude = db.Column(db.Float, nullable=True)
	tags = db.Column(db.JSON, nullable=False, default=list)
	votes = db.Column(db.Integer, nullable=False, default=0)
	priority_score = db.Column(db.Integer, nullable=False, default=0, index=True)
	escalation_level = db.Column(db.Integer, nullable=False, default=0)
	sla_duration_hours = db.Column(db.Integer, nullable=False, default=48)
	sla_deadline = db.Column(db.DateTime, nullable=False, index=True)
	resolved_at = db.Column(db.DateTime, nullable=True, index=True)
	resolution_time = db.Column(db.Float, nullable=True)
	satisfaction_rating = db.Column(db.Integer, nullable=True)
	rated_by_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	version = db.Column(db.Integer, nullable=False)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
	updated_at = db.Column(
		db.DateTime,
		default=datetime.utcnow,
		onupdate=datetime.utcnow,
		nullable=False,
	)

	__table_args__ = (
		db.CheckConstraint(_in_clause("department", DEPARTMENTS), name="ck_complaint_department_valid"),
		db.CheckConstraint(_in_clause("status", COMPLAINT_STATUSES), name="ck_complaint_status_valid"),
		db.CheckConstraint("votes >= 0", name="ck_complaint_votes_non_negative"),
		db.CheckConstraint("escalation_level IN (0,1,2)", name="ck_complaint_escalation_level"),
		db.CheckConstraint(
			"satisfaction_rating IS NULL OR (satisfaction_rating >= 1 AND satisfaction_rating <= 5)",
			name="ck_complaint_rating_range",
		),
		db.Index("ix_complaints_ranking", "priority_score", "created_at"),
	)

	# Concurrent writers on the same row fail with StaleDataError and are retried by the store.
	__mapper_args__ = {"version_id_col": version}

	citizen = db.relationship("User", foreign_keys=[citizen_id])
	assigned_to = db.relationship("User", foreign_keys=[assigned_to_id])
	rated_by = db.relationship("User", foreign_keys=[rated_by_id])
	images = db.relationship(
		"ComplaintImage",
		back_populates="complaint",
		order_by="ComplaintImage.position",
		cascade="all, delete-orphan",
	)
	voters = db.relationship("ComplaintVote", back_populates="complaint", cascade="all, delete-orphan")
	activity = db.relationship(
		"ComplaintActivity",
		back_populates="complaint",
		order_by="ComplaintActivity.id",
		cascade="all, delete-orphan",
	)

	def log(self, message: str, actor: str = "System", at: datetime | None = None) -> "ComplaintActivity":
		entry = ComplaintActivity(message=message, actor=actor, created_at=at or datetime.utcnow())
		self.activity.append(entry)
		return entry

	def to_payload(self) -> dict:
		return {
			"id": self.id,
			"title": self.title,
			"description": self.description,
			"department": self.department,
			"status": self.status,
			"emergency": self.emergency,
			"citizen": self.citizen.summary_payload() if self.citizen else None,
			"assignedTo": self.assigned_to.summary_payload() if self.assigned_to else None,
			"city": self.city,
			"location": {"address": self.address, "lat": self.latitude, "lng": self.longitude},
			"tags": list(self.tags or []),
			"images": [image.to_payload() for image in self.images],
			"votes": self.votes,
			"votedBy": [vote.user_id for vote in self.voters],
			"priorityScore": self.priority_score,
			"escalationLevel": self.escalation_level,
			"slaDuration": self.sla_duration_hours,
			"slaDeadline": _isoformat(self.sla_deadline),
			"resolvedAt": _isoformat(self.resolved_at),
			"resolutionTime": self.resolution_time,
			"satisfactionRating": self.satisfaction_rating,
			"activityLog": [entry.to_payload() for entry in self.activity],
			"createdAt": _isoformat(self.created_at),
			"updatedAt": _isoformat(self.updated_at),
		}

	def map_payload(self) -> dict:
		return {
			"id": self.id,
			"title": self.title,
			"status": self.status,
			"department": self.department,
			"emergency": self.emergency,
			"location": {"address": self.address, "lat": self.latitude, "lng": self.longitude},
			"priorityScore": self.priority_score,
			"createdAt": _isoformat(self.created_at),
		}


class ComplaintImage(db.Model):
	__tablename__ = "complaint_images"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=False, index=True)
	position = db.Column(db.Integer, nullable=False, default=0)
	url = db.Column(db.String(1024), nullable=False)
	public_id = db.Column(db.String(255), nullable=False)
	width = db.Column(db.Integer, nullable=True)
	height = db.Column(db.Integer, nullable=True)
	image_format = db.Column(db.String(20), nullable=True)
	size_bytes = db.Column(db.Integer, nullable=True)

	__table_args__ = (db.UniqueConstraint("complaint_id", "public_id", name="uq_complaint_image_public_id"),)

	complaint = db.relationship("Complaint", back_populates="images")

	def to_payload(self) -> dict:
		return {
			"url": self.url,
			"publicId": self.public_id,
			"width": self.width,
			"height": self.height,
			"format": self.image_format,
			"bytes": self.size_bytes,
		}


class ComplaintVote(db.Model):
	__tablename__ = "complaint_votes"

	id = db.Column(db.Integer, primary_key=True)
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=False, index=True)
	user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

	__table_args__ = (db.UniqueConstraint("complaint_id", "user_id", name="uq_complaint_vote_user"),)

	complaint = db.relationship("Complaint", back_populates="voters")


class ComplaintActivity(db.Model):
	__tablename__ = "complaint_activities"

	id = db.Column(db.Integer, primary_key=True)
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=False, index=True)
	message = db.Column(db.String(500), nullable=False)
	actor = db.Column(db.String(150), nullable=False, default="System")
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

	complaint = db.relationship("Complaint", back_populates="activity")

	def to_payload(self) -> dict:
		return {"message": self.message, "actor": self.actor, "time": _isoformat(self.created_at)}


class Notification(db.Model):
	__tablename__ = "notifications"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	recipient_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
	type = db.Column(db.String(30), nullable=False)
	title = db.Column(db.String(255), nullable=False)
	message = db.Column(db.String(500), nullable=False)
	# Deleting a complaint leaves its notifications behind.
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id", ondelete="SET NULL"), nullable=True)
	icon = db.Column(db.String(16), nullable=False, default="🔔")
	is_read = db.Column(db.Boolean, nullable=False, default=False)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

	__table_args__ = (
		db.CheckConstraint(_in_clause("type", NOTIFICATION_TYPES), name="ck_notification_type_valid"),
		db.Index("ix_notification_inbox", "recipient_id", "is_read", "created_at"),
	)

	recipient = db.relationship("User", back_populates="notifications")
	complaint = db.relationship("Complaint")

	def to_payload(self) -> dict:
		complaint = None
		if self.complaint is not None:
			complaint = {"id": self.complaint.id, "title": self.complaint.title, "status": self.complaint.status}
		return {
			"id": self.id,
			"recipient": self.recipient_id,
			"type": self.type,
			"title": self.title,
			"message": self.message,
			"complaint": complaint,
			"icon": self.icon,
			"read": self.is_read,
			"createdAt": _isoformat(self.created_at),
		}
