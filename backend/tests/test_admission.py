"""
并发准入与违规判定测试
"""
from mediagen.config import get_settings
from mediagen.models import NanoBananaTask, Sora2Task, TaskStatus, VideoTask, generate_id
from mediagen.services.admission import AdmissionController
from mediagen.services.refund_policy import RefundClassifier


def add_task(db, user_id, model, status, **fields):
    task = model(id=generate_id("t"), user_id=user_id, status=status, credits_cost=1, **fields)
    db.add(task)
    db.commit()
    return task


class TestAdmissionController:
    """全局并发上限"""

    def test_counts_only_active_tasks(self, db_session, test_user):
        add_task(db_session, test_user.id, Sora2Task, TaskStatus.PENDING.value, prompt="a")
        add_task(db_session, test_user.id, VideoTask, TaskStatus.PROCESSING.value,
                 prompt="b", product_images=["http://x/1.png"])
        add_task(db_session, test_user.id, NanoBananaTask, TaskStatus.COMPLETED.value, prompt="c")
        add_task(db_session, test_user.id, Sora2Task, TaskStatus.FAILED.value, prompt="d")

        controller = AdmissionController(10)
        counts = controller.active_counts(db_session)
        assert counts["sora2_tasks"] == 1
        assert counts["video_tasks"] == 1
        assert counts["nano_banana_tasks"] == 0
        assert controller.active_count(db_session) == 2

    def test_refuses_at_limit(self, db_session, test_user):
        controller = AdmissionController(2)
        add_task(db_session, test_user.id, Sora2Task, TaskStatus.PENDING.value, prompt="a")
        assert controller.can_admit(db_session)

        add_task(db_session, test_user.id, NanoBananaTask, TaskStatus.PROCESSING.value, prompt="b")
        assert controller.can_admit(db_session) is False

    def test_terminal_tasks_free_slots(self, db_session, test_user):
        controller = AdmissionController(1)
        task = add_task(db_session, test_user.id, Sora2Task, TaskStatus.PROCESSING.value, prompt="a")
        assert controller.can_admit(db_session) is False

        task.status = TaskStatus.COMPLETED.value
        db_session.commit()
        assert controller.can_admit(db_session)


class TestRefundClassifier:
    """内容违规关键词判定"""

    def test_default_keywords(self):
        classifier = RefundClassifier(get_settings().CONTENT_POLICY_KEYWORDS)
        assert classifier.is_policy_violation("Request blocked by Content Policy")
        assert classifier.is_policy_violation("prompt violates our usage guidelines")
        assert classifier.is_policy_violation("图片包含敏感内容")
        assert classifier.is_policy_violation("审核未通过")

    def test_non_policy_failures(self):
        classifier = RefundClassifier(get_settings().CONTENT_POLICY_KEYWORDS)
        assert classifier.is_policy_violation("connection reset") is False
        assert classifier.is_policy_violation("Task timed out after 10 minutes") is False
        assert classifier.is_policy_violation("") is False
        assert classifier.is_policy_violation(None) is False

    def test_custom_keywords(self):
        classifier = RefundClassifier(["NSFW", ""])
        assert classifier.is_policy_violation("nsfw detected")
        assert classifier.is_policy_violation("safety filter") is False
