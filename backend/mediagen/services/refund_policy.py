from typing import Iterable, Optional


class RefundClassifier:
    """内容违规判定：命中关键词的失败不退款，其余失败全额退款"""

    def __init__(self, keywords: Iterable[str]):
        self.keywords = tuple(k.lower() for k in keywords if k)

    def is_policy_violation(self, error_message: Optional[str]) -> bool:
        if not error_message:
            return False
        lowered = error_message.lower()
        return any(keyword in lowered for keyword in self.keywords)
