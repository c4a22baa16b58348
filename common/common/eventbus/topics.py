from __future__ import annotations

from .core import Topic


# 재시도를 소진한 보상 작업(환불, 재입고, 접근권 연장, 원장 기록)이 적재되는 운영자 큐.
TOPIC_COMPENSATION = Topic("quizprize.ledger.compensation")
