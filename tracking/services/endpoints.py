# tracking/services/endpoints.py
from dataclasses import dataclass

@dataclass
class Endpoints:
    # REST path templates used by the tracking services
    payment: str = "/api/payments/{payment_id}"
    payments: str = "/api/payments"
    membership_current: str = "/api/memberships/my-current"

    def payment_path(self, payment_id: str) -> str:
        return self.payment.format(payment_id=payment_id)


def make_endpoints_from_cfg(cfg: dict) -> Endpoints:
    overrides = (cfg.get("api") or {}).get("paths") or {}
    known = set(Endpoints.__dataclass_fields__)
    unknown = set(overrides) - known
    if unknown:
        raise ValueError(f"Invalid cfg unknown api.paths keys: {sorted(unknown)}")
    return Endpoints(**overrides)
