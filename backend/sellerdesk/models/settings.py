from datetime import datetime

from sellerdesk.extensions import db


class MarketplaceSettings(db.Model):
    __tablename__ = "marketplace_settings"

    id = db.Column(db.Integer, primary_key=True)

    # flat | business_hours
    deadline_policy = db.Column(db.String(24), nullable=False, default="flat", server_default="flat")
    business_open_hour = db.Column(db.Integer, nullable=False, default=10, server_default="10")
    business_close_hour = db.Column(db.Integer, nullable=False, default=19, server_default="19")
    # Comma-separated weekday numbers, Monday=0.
    business_days = db.Column(db.String(32), nullable=False, default="0,1,2,3,4,5", server_default="0,1,2,3,4,5")
    business_timezone = db.Column(db.String(64), nullable=False, default="Asia/Kolkata", server_default="Asia/Kolkata")

    # Commerce sales-channel id used when publishing vendor products.
    publication_id = db.Column(db.String(160), nullable=True)

    updated_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def business_day_list(self) -> list[int]:
        out = []
        for part in (self.business_days or "").split(","):
            part = part.strip()
            if part.isdigit() and int(part) not in out:
                out.append(int(part))
        return sorted(out)

    def to_dict(self):
        return {
            "deadline_policy": (self.deadline_policy or "flat"),
            "business_open_hour": int(self.business_open_hour if self.business_open_hour is not None else 10),
            "business_close_hour": int(self.business_close_hour if self.business_close_hour is not None else 19),
            "business_days": self.business_day_list(),
            "business_timezone": (self.business_timezone or "Asia/Kolkata"),
            "publication_id": self.publication_id,
            "updated_by": self.updated_by,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
