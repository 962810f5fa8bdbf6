"""
Scheduled Task Model - Durable delayed execution.

A task is "run handler <task_name> with <payload> at or after run_at".
Rows survive restarts; services.scheduler claims due rows, runs the
handler and records the outcome. dedupe_key prevents queuing the same
logical step twice while it is still pending.
"""
from datetime import datetime

from constants import TASK_STATUSES
from models.database import db, enum_check


class ScheduledTask(db.Model):
    __tablename__ = 'scheduled_tasks'

    id = db.Column(db.Integer, primary_key=True)
    task_name = db.Column(db.String(100), nullable=False, index=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    dedupe_key = db.Column(db.String(255), index=True)

    run_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    status = db.Column(db.String(20), nullable=False, default='pending')
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text)

    started_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_scheduled_tasks_status_run_at', 'status', 'run_at'),
        enum_check('status', TASK_STATUSES, 'scheduled_tasks_status_check'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'task_name': self.task_name,
            'payload': self.payload or {},
            'dedupe_key': self.dedupe_key,
            'run_at': self.run_at.isoformat() if self.run_at else None,
            'status': self.status,
            'attempts': self.attempts,
            'last_error': self.last_error,
        }

    def __repr__(self):
        return f"<ScheduledTask {self.id} {self.task_name} {self.status}>"
