#!/usr/bin/env python3
"""
Seed the policy collection with synthetic lending policies.

The policy expert answers from whatever this collection holds; without
seeding, every policy question is answered with "no policy found".
All policies below are synthetic and for demo purposes only.

Usage:
    uv run python scripts/seed_policies.py

Target:
    The Chroma server at CHROMA_URL, collection POLICY_COLLECTION
    (default "policies"). Without CHROMA_URL the in-process client is
    used, and the seeded data is gone when the script exits.
"""

from app.services.retrieval import ChromaPolicyStore

SAMPLE_POLICIES = [
    {
        "id": "POL-2024-001",
        "content": (
            "小微企业首贷优惠：首次申请经营贷款的小微企业，贷款利率在当期"
            "LPR基础上下浮20个基点，最高额度300万元，期限不超过3年。"
        ),
        "metadata": {"category": "优惠活动", "tags": ["小微企业", "首贷"]},
    },
    {
        "id": "POL-2024-002",
        "content": (
            "个人消费贷款申请条件：年满22周岁且不超过55周岁，有稳定收入来源，"
            "征信记录良好，近两年内无连续三期以上逾期。"
        ),
        "metadata": {"category": "申请条件", "tags": ["个人消费贷"]},
    },
    {
        "id": "POL-2024-003",
        "content": (
            "罚息减免规定：因不可抗力或首次逾期且逾期不超过30天的客户，"
            "可申请减免不超过50%的罚息，每位客户每年限一次。"
        ),
        "metadata": {"category": "客户服务", "tags": ["罚息", "减免"]},
    },
    {
        "id": "POL-2024-004",
        "content": (
            "新市民安居贷款活动：在本市连续缴纳社保满12个月的新市民，"
            "购房贷款首付比例可降至20%，并享受利率优惠，活动截至年底。"
        ),
        "metadata": {"category": "优惠活动", "tags": ["新市民", "住房"]},
    },
    {
        "id": "POL-2024-005",
        "content": (
            "提前还款规定：贷款发放满12个月后可申请提前还款，无违约金；"
            "未满12个月提前还款的，按提前还款本金的1%收取违约金。"
        ),
        "metadata": {"category": "还款规定", "tags": ["提前还款"], "expires": None},
    },
]


def seed_policies() -> None:
    store = ChromaPolicyStore()
    store.add_policies(
        ids=[p["id"] for p in SAMPLE_POLICIES],
        contents=[p["content"] for p in SAMPLE_POLICIES],
        metadatas=[p["metadata"] for p in SAMPLE_POLICIES],
    )
    print(f"Seeded {len(SAMPLE_POLICIES)} policies")


if __name__ == "__main__":
    seed_policies()
