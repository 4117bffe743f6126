# backend/utils/audit.py
import logging
from sqlalchemy.orm import Session
from models.log import Log

logger = logging.getLogger(__name__)

def client_ip(request):
    return request.client.host if request is not None and request.client else None

def write_log(db: Session, *, user_id, action, resource, resource_id=None, status="SUCCESS", ip=None, meta=None):
    """Persist an audit entry in its own commit; call after the business commit."""
    entry = Log(
        user_id=user_id, action=action, resource=resource, resource_id=resource_id,
        status=status, ip=ip, meta=meta or {},
    )
    db.add(entry)
    db.commit()
    logger.info("%s %s:%s user=%s status=%s", action, resource, resource_id, user_id, status)
