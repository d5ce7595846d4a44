"""
任务队列服务
请求线程只负责入队，工作线程池执行生成任务的后台流程
"""
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional
from concurrent.futures import ThreadPoolExecutor
from enum import Enum

from mediagen.config import get_settings

logger = logging.getLogger(__name__)


class WorkItemStatus(str, Enum):
    """队列内工作项状态（与任务表状态无关）"""
    QUEUED = "queued"         # 等待工作线程
    RUNNING = "running"       # 正在执行
    DONE = "done"             # 执行结束
    CRASHED = "crashed"       # 执行函数抛出异常


class WorkItem:
    """工作项信息"""

    def __init__(self, task_id: str, task_type: str, user_id: int, resume: bool = False):
        self.task_id = task_id
        self.task_type = task_type
        self.user_id = user_id
        self.resume = resume
        self.status = WorkItemStatus.QUEUED
        self.error_message: Optional[str] = None
        self.created_at = datetime.now()
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in (WorkItemStatus.QUEUED, WorkItemStatus.RUNNING)


class TaskQueue:
    """
    后台任务队列
    同一个任务 ID 同时只会有一个工作项在执行
    """

    def __init__(self, max_workers: int = 4):
        self._items: Dict[str, WorkItem] = {}
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="task_worker")
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._shutdown_event = threading.Event()
        self._maintenance_thread: Optional[threading.Thread] = None

    def submit(
        self,
        task_id: str,
        task_type: str,
        user_id: int,
        func: Callable,
        resume: bool = False,
    ) -> WorkItem:
        """
        提交工作项

        Args:
            task_id: 任务ID
            task_type: 任务类型
            user_id: 用户ID
            func: 执行函数，签名为 func(task_type, task_id, resume=...)
            resume: 是否从轮询阶段恢复

        Returns:
            WorkItem: 工作项
        """
        with self._lock:
            existing = self._items.get(task_id)
            if existing and existing.is_active:
                logger.warning(f"Task {task_id} already queued, skip duplicate submission")
                return existing
            item = WorkItem(task_id, task_type, user_id, resume=resume)
            self._items[task_id] = item

        self._executor.submit(self._run, item, func)
        logger.info(f"Task {task_id} ({task_type}) queued for user {user_id}")
        return item

    def _run(self, item: WorkItem, func: Callable):
        """工作线程入口"""
        item.status = WorkItemStatus.RUNNING
        item.started_at = datetime.now()
        try:
            func(item.task_type, item.task_id, resume=item.resume)
            item.status = WorkItemStatus.DONE
        except Exception as e:
            item.status = WorkItemStatus.CRASHED
            item.error_message = str(e)
            logger.error(f"Task {item.task_id} worker crashed: {e}", exc_info=True)
        finally:
            item.finished_at = datetime.now()

    def get_item(self, task_id: str) -> Optional[WorkItem]:
        with self._lock:
            return self._items.get(task_id)

    def is_active(self, task_id: str) -> bool:
        item = self.get_item(task_id)
        return bool(item and item.is_active)

    def active_task_ids(self) -> List[str]:
        with self._lock:
            return [task_id for task_id, item in self._items.items() if item.is_active]

    def cleanup_old_items(self, max_age_hours: int = 24) -> int:
        """清理已结束的旧工作项"""
        with self._lock:
            cutoff = datetime.now() - timedelta(hours=max_age_hours)
            stale = [
                task_id for task_id, item in self._items.items()
                if item.finished_at and item.finished_at < cutoff
            ]
            for task_id in stale:
                del self._items[task_id]
            return len(stale)

    def start_maintenance(self, interval_seconds: float, callback: Callable[[], None]):
        """启动定期维护线程（清理工作项、恢复滞留任务）"""
        if self._maintenance_thread and self._maintenance_thread.is_alive():
            return

        def loop():
            while not self._stop_event.wait(interval_seconds):
                try:
                    count = self.cleanup_old_items()
                    if count > 0:
                        logger.info(f"Cleaned up {count} old work items")
                    callback()
                except Exception as e:
                    logger.error(f"Queue maintenance failed: {e}", exc_info=True)

        self._stop_event.clear()
        self._maintenance_thread = threading.Thread(target=loop, name="task_maintenance", daemon=True)
        self._maintenance_thread.start()

    def get_queue_stats(self) -> dict:
        """获取队列统计信息"""
        with self._lock:
            stats = {"total": len(self._items)}
            for status in WorkItemStatus:
                stats[status.value] = 0
            for item in self._items.values():
                stats[item.status.value] += 1
            return stats

    def stop_maintenance(self):
        self._stop_event.set()
        if self._maintenance_thread:
            self._maintenance_thread.join(timeout=5)
            self._maintenance_thread = None

    def is_shutting_down(self) -> bool:
        return self._shutdown_event.is_set()

    def sleep(self, seconds: float):
        """可被关闭信号打断的等待"""
        self._shutdown_event.wait(seconds)

    def shutdown(self, wait: bool = False):
        """
        关闭队列：取消排队中的工作项，并通知轮询中的工作项尽快退出
        退出时仍处于 processing 的任务由滞留任务恢复继续轮询
        """
        self._shutdown_event.set()
        self.stop_maintenance()
        self._executor.shutdown(wait=wait, cancel_futures=True)
        logger.info("Task queue shut down")


# 全局任务队列实例
task_queue = TaskQueue(max_workers=get_settings().TASK_WORKERS)
