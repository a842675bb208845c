import re
from datetime import datetime, timedelta, timezone

from donorhub_api.models.rewards import Redemption, RedemptionStatus
from donorhub_api.services.rewards.codes import build_qr_payload, generate_voucher_code, normalize_voucher_code
from donorhub_api.services.rewards.redemption import effective_status


def test_codes_are_url_safe_and_unique() -> None:
    moment = datetime(2026, 10, 19, 10, 30, tzinfo=timezone.utc)
    codes = {generate_voucher_code(now=moment) for _ in range(200)}

    assert len(codes) == 200
    assert all(re.fullmatch(r"VCH-[0-9A-Z]+-[0-9A-Z]{9}", code) for code in codes)
    assert len({code.split("-")[1] for code in codes}) == 1


def test_qr_payload_points_at_verification_page() -> None:
    assert build_qr_payload("https://donorhub.example/", "VCH-1-ABC") == "https://donorhub.example/verify-qr/VCH-1-ABC"


def test_normalize_voucher_code() -> None:
    assert normalize_voucher_code("  vch-abc-123xyz  ") == "VCH-ABC-123XYZ"


def test_effective_status_reads_past_due_pending_as_expired() -> None:
    now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    redemption = Redemption(status=RedemptionStatus.PENDING, expires_at=now - timedelta(seconds=1))

    assert effective_status(redemption, now=now) == RedemptionStatus.EXPIRED
    assert effective_status(redemption, now=now - timedelta(hours=1)) == RedemptionStatus.PENDING

    redemption.status = RedemptionStatus.VERIFIED
    assert effective_status(redemption, now=now) == RedemptionStatus.VERIFIED
