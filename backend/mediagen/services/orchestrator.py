"""
生成任务编排服务

请求链路：校验 -> 计费 -> 余额预检 -> 并发准入 -> 扣费并创建任务 -> 入队
后台链路：processing -> 提交生成服务 -> (同步结果 | 轮询) -> 转存产物 -> completed
          失败时按内容违规判定决定是否退款 -> failed
"""
import logging
import os
import time
from datetime import timedelta
from functools import lru_cache
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from mediagen.config import get_settings
from mediagen.database import SessionLocal
from mediagen.errors import (
    concurrent_limit_error,
    credits_insufficient_error,
    reservation_failed_error,
    unknown_task_type_error,
    validation_error_error,
)
from mediagen.models import (
    ACTIVE_STATUSES, TERMINAL_STATUSES, Asset, TaskStatus, User, generate_id,
)
from mediagen.services import ledger
from mediagen.services.admission import AdmissionController
from mediagen.services.asset_ingestor import AssetIngestor
from mediagen.services.providers.base import GeneratedOutput, GenerationAdapter, PollStatus
from mediagen.services.providers.client import ProviderError
from mediagen.services.providers.registry import build_adapters, get_provider_client
from mediagen.services.refund_policy import RefundClassifier
from mediagen.services.storage import get_storage
from mediagen.services.task_queue import task_queue

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    TaskStatus.PENDING.value: {TaskStatus.PROCESSING.value, TaskStatus.FAILED.value},
    TaskStatus.PROCESSING.value: {TaskStatus.COMPLETED.value, TaskStatus.FAILED.value},
}


class InvalidTransitionError(Exception):
    """非法的任务状态迁移"""
    pass


def transition(task, new_status: TaskStatus) -> None:
    current = task.status.value if isinstance(task.status, TaskStatus) else task.status
    if new_status.value not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Task {task.id}: {current} -> {new_status.value} not allowed")
    task.status = new_status.value


class TaskOrchestrator:

    def __init__(
        self,
        adapters: Dict[str, GenerationAdapter],
        session_factory: Callable[[], Session],
        admission: AdmissionController,
        classifier: RefundClassifier,
        ingestor: AssetIngestor,
        dispatcher: Optional[Callable] = None,
        is_active: Optional[Callable[[str], bool]] = None,
        poll_interval: float = 5,
        stale_minutes: int = 30,
        sleep: Optional[Callable[[float], None]] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ):
        self.adapters = adapters
        self.session_factory = session_factory
        self.admission = admission
        self.classifier = classifier
        self.ingestor = ingestor
        self.poll_interval = poll_interval
        self.stale_minutes = stale_minutes
        self._sleep = sleep or task_queue.sleep
        self._should_stop = should_stop or task_queue.is_shutting_down
        self._dispatcher = dispatcher or self._queue_dispatch
        self._is_active = is_active or task_queue.is_active

    # ============ 请求链路 ============

    def get_adapter(self, task_type: str) -> GenerationAdapter:
        adapter = self.adapters.get(task_type)
        if adapter is None:
            raise unknown_task_type_error(task_type)
        return adapter

    def submit(self, db: Session, user: User, task_type: str, payload: dict):
        """
        创建生成任务

        扣费与任务记录在同一事务中提交，保证任务一定有对应的扣费流水。
        返回任务记录，后台执行不在请求链路上。
        """
        adapter = self.get_adapter(task_type)

        try:
            params = adapter.validate(payload or {})
        except ValidationError as e:
            errors = [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]
            raise validation_error_error("请求参数不合法", details={"errors": errors})

        cost = adapter.calculate_cost(params)

        if user.credits < cost:
            raise credits_insufficient_error(cost, user.credits)

        if not self.admission.can_admit(db):
            raise concurrent_limit_error(self.admission.max_concurrent)

        task_id = generate_id(task_type.replace("-", "_"))
        try:
            if not ledger.deduct(db, user.id, cost, adapter.describe(params), task_id=task_id, task_type=task_type):
                logger.warning(f"Credit reservation failed for user {user.id} ({task_type}, cost {cost})")
                raise reservation_failed_error(cost)

            task = adapter.build_task(
                params,
                id=task_id,
                user_id=user.id,
                credits_cost=cost,
                status=TaskStatus.PENDING.value,
            )
            db.add(task)
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(task)

        logger.info(f"Task {task_id} ({task_type}) created for user {user.id}, cost {cost}")
        self.dispatch(task_type, task_id, user.id)
        return task

    def dispatch(self, task_type: str, task_id: str, user_id: int, resume: bool = False):
        try:
            self._dispatcher(task_type, task_id, user_id, resume)
        except Exception as e:
            # 任务仍是 pending，由滞留任务恢复重新入队
            logger.error(f"Failed to dispatch task {task_id}: {e}", exc_info=True)

    def _queue_dispatch(self, task_type: str, task_id: str, user_id: int, resume: bool = False):
        task_queue.submit(task_id, task_type, user_id, self.execute, resume=resume)

    # ============ 后台链路 ============

    def execute(self, task_type: str, task_id: str, resume: bool = False):
        """后台执行单个任务，任何异常都会让任务落到终态"""
        adapter = self.adapters[task_type]
        db = self.session_factory()
        try:
            self._execute(db, adapter, task_id, resume)
        except Exception as e:
            logger.error(f"Task {task_id} ({task_type}) crashed: {e}", exc_info=True)
            db.rollback()
            try:
                task = self._load(db, adapter, task_id)
                if task is not None and task.status not in TERMINAL_STATUSES:
                    self._fail(db, adapter, task, f"Internal error: {e}", force_refund=True)
            except Exception:
                db.rollback()
                logger.critical(f"Task {task_id} could not be marked failed", exc_info=True)
                raise
        finally:
            db.close()

    @staticmethod
    def _load(db: Session, adapter: GenerationAdapter, task_id: str):
        model = adapter.task_model
        return db.query(model).filter(model.id == task_id).first()

    def _exists(self, db: Session, adapter: GenerationAdapter, task_id: str) -> bool:
        model = adapter.task_model
        return db.query(model.id).filter(model.id == task_id).first() is not None

    def _execute(self, db: Session, adapter: GenerationAdapter, task_id: str, resume: bool):
        task = self._load(db, adapter, task_id)
        if task is None:
            logger.info(f"Task {task_id} no longer exists, skip")
            return
        if task.status in TERMINAL_STATUSES:
            logger.info(f"Task {task_id} already {task.status}, skip")
            return

        started = time.monotonic()

        if task.status == TaskStatus.PROCESSING.value:
            # 恢复执行：只有拿到外部任务 ID 的任务才能继续轮询
            if not task.external_task_id:
                self._fail(db, adapter, task, "Task interrupted before the provider returned a result",
                           force_refund=True)
                return
            logger.info(f"Task {task_id} resuming poll for {task.external_task_id}")
            self._poll(db, adapter, task, task.external_task_id, started)
            return

        transition(task, TaskStatus.PROCESSING)
        db.commit()

        try:
            result = adapter.submit(task)
        except ProviderError as e:
            logger.warning(f"Task {task_id} ({adapter.task_type}) submission failed: {e.message}")
            self._fail(db, adapter, task, e.message, force_refund=True)
            return

        if result.error:
            logger.warning(f"Task {task_id} ({adapter.task_type}) rejected by provider: {result.error}")
            self._fail(db, adapter, task, result.error)
            return
        if result.outputs:
            self._complete(db, adapter, task, result.outputs, started)
            return
        if not result.external_task_id:
            self._fail(db, adapter, task, "Provider returned neither a result nor a task id", force_refund=True)
            return

        task.external_task_id = result.external_task_id
        db.commit()
        logger.info(f"Task {task_id} submitted, external id {result.external_task_id}")
        self._poll(db, adapter, task, result.external_task_id, started)

    def _poll(self, db: Session, adapter: GenerationAdapter, task, handle: str, started: float):
        interval = adapter.poll_interval or self.poll_interval
        task_id = task.id

        for attempt in range(1, adapter.max_poll_attempts + 1):
            self._sleep(interval)
            if self._should_stop():
                # 保持 processing 和外部任务 ID，重启后由滞留任务恢复继续轮询
                logger.info(f"Task {task_id} polling interrupted by shutdown")
                return

            try:
                poll = adapter.poll_status(handle)
            except ProviderError as e:
                if e.retryable:
                    logger.warning(
                        f"Task {task_id} ({adapter.task_type}) poll attempt {attempt} failed: {e.message}"
                    )
                    continue
                logger.warning(f"Task {task_id} ({adapter.task_type}) status query rejected: {e.message}")
                self._fail(db, adapter, task, e.message)
                return

            if poll.status == PollStatus.COMPLETED and poll.outputs:
                self._complete(db, adapter, task, poll.outputs, started)
                return
            if poll.status == PollStatus.FAILED:
                self._fail(db, adapter, task, poll.error or "Generation failed")
                return

            # 任务记录被删除则停止
            db.expire_all()
            if not self._exists(db, adapter, task_id):
                logger.info(f"Task {task_id} deleted while polling, stop")
                return

        minutes = adapter.timeout_minutes(interval)
        logger.warning(f"Task {task_id} ({adapter.task_type}) timed out after {adapter.max_poll_attempts} polls")
        self._fail(db, adapter, task, f"Task timed out after {minutes} minutes", force_refund=True)

    def _complete(self, db: Session, adapter: GenerationAdapter, task, outputs: List[GeneratedOutput], started: float):
        if adapter.asset_type is None:
            task.result_text = "\n\n".join(o.text for o in outputs if o.text)
        else:
            urls = []
            for output in outputs:
                stored = self.ingestor.persist(output, task.user_id, adapter.asset_type, task_id=task.id)
                if stored:
                    urls.append(stored.url)
                    db.add(Asset(
                        id=generate_id("asset"),
                        user_id=task.user_id,
                        type=adapter.asset_type,
                        source=adapter.source_tag,
                        filename=os.path.basename(stored.file_path),
                        url=stored.url,
                        file_path=stored.file_path,
                        file_size=stored.file_size,
                        mime_type=stored.mime_type,
                        task_id=task.id,
                    ))
                elif not output.is_inline and output.url:
                    logger.warning(f"Task {task.id}: storing output failed, keeping provider URL")
                    urls.append(output.url)
                else:
                    logger.error(f"Task {task.id}: inline output could not be stored, skipped")

            if not urls:
                self._fail(db, adapter, task, "Failed to store generated output", force_refund=True)
                return
            task.result_urls = urls

        transition(task, TaskStatus.COMPLETED)
        task.duration_seconds = round(time.monotonic() - started, 2)
        task.error_message = None
        db.commit()
        logger.info(f"Task {task.id} ({adapter.task_type}) completed in {task.duration_seconds}s")

    def _fail(self, db: Session, adapter: GenerationAdapter, task, message: str, force_refund: bool = False):
        """
        标记失败并结算积分

        退款与状态更新在同一事务提交，用户看到 failed 时余额已经恢复。
        超时、提交异常、内部错误一律退款；服务方返回的失败信息命中违规关键词时不退款。
        """
        policy_violation = not force_refund and self.classifier.is_policy_violation(message)
        if policy_violation:
            logger.info(f"Task {task.id} failed by content policy, no refund: {message}")
        elif task.credits_cost > 0:
            ledger.refund(
                db,
                task.user_id,
                task.credits_cost,
                f"任务失败退款: {(message or '')[:100]}",
                task_id=task.id,
                task_type=adapter.task_type,
            )

        transition(task, TaskStatus.FAILED)
        task.error_message = message
        db.commit()
        logger.info(f"Task {task.id} ({adapter.task_type}) failed: {message}")

    # ============ 滞留任务恢复 ============

    def recover_stale_tasks(self, db: Session) -> int:
        """
        恢复长时间未更新且不在本进程队列中的任务

        - pending：未联系过生成服务，重新执行
        - processing 且有外部任务 ID：继续轮询
        - processing 无外部任务 ID：无法确认结果，失败并退款
        """
        # updated_at 由数据库时钟写入，截止时间也按数据库时钟计算
        cutoff = db.query(func.now()).scalar() - timedelta(minutes=self.stale_minutes)
        recovered = 0

        for task_type, adapter in self.adapters.items():
            model = adapter.task_model
            stale = db.query(model).filter(
                model.status.in_(ACTIVE_STATUSES),
                model.updated_at < cutoff,
            ).all()

            for task in stale:
                if self._is_active(task.id):
                    continue
                if task.status == TaskStatus.PROCESSING.value and not task.external_task_id:
                    self._fail(db, adapter, task, "Task interrupted before the provider returned a result",
                               force_refund=True)
                else:
                    task.updated_at = func.now()
                    db.commit()
                    self.dispatch(task_type, task.id, task.user_id,
                                  resume=task.status == TaskStatus.PROCESSING.value)
                recovered += 1
                logger.info(f"Recovered stale task {task.id} ({task_type})")

        return recovered

    def run_recovery(self):
        db = self.session_factory()
        try:
            count = self.recover_stale_tasks(db)
            if count:
                logger.info(f"Recovered {count} stale tasks")
        finally:
            db.close()


@lru_cache()
def get_orchestrator() -> TaskOrchestrator:
    settings = get_settings()
    storage = get_storage()
    return TaskOrchestrator(
        adapters=build_adapters(get_provider_client(), storage=storage),
        session_factory=SessionLocal,
        admission=AdmissionController(settings.MAX_CONCURRENT_TASKS),
        classifier=RefundClassifier(settings.CONTENT_POLICY_KEYWORDS),
        ingestor=AssetIngestor(
            storage,
            max_attempts=settings.INGEST_MAX_ATTEMPTS,
            timeout_seconds=settings.INGEST_TIMEOUT_SECONDS,
        ),
        poll_interval=settings.POLL_INTERVAL_SECONDS,
        stale_minutes=settings.STALE_TASK_MINUTES,
    )
