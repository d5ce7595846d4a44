"""
并发准入控制
全局（不分用户）限制 pending/processing 任务总数，计数直接查询任务表。
检查与创建之间存在竞态，允许并发请求造成的短暂超额。
"""
import logging
from typing import Dict

from sqlalchemy import func
from sqlalchemy.orm import Session

from mediagen.models import ACTIVE_STATUSES, TASK_MODELS

logger = logging.getLogger(__name__)


class AdmissionController:

    def __init__(self, max_concurrent: int):
        self.max_concurrent = max_concurrent

    def active_counts(self, db: Session) -> Dict[str, int]:
        counts = {}
        for model in TASK_MODELS:
            counts[model.__tablename__] = db.query(func.count(model.id)).filter(
                model.status.in_(ACTIVE_STATUSES)
            ).scalar() or 0
        return counts

    def active_count(self, db: Session) -> int:
        return sum(self.active_counts(db).values())

    def can_admit(self, db: Session) -> bool:
        active = self.active_count(db)
        if active >= self.max_concurrent:
            logger.warning(f"Admission refused: {active} active tasks (max {self.max_concurrent})")
            return False
        return True
