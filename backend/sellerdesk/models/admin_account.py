from datetime import datetime

from sellerdesk.extensions import db


class AdminAccount(db.Model):
    __tablename__ = "admin_accounts"

    user_id = db.Column(db.String(128), primary_key=True)
    enabled = db.Column(db.Boolean, nullable=False, default=True)
    note = db.Column(db.String(240), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "enabled": bool(self.enabled),
            "note": self.note or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
