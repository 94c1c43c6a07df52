import hashlib
import hmac
import time
from dataclasses import dataclass
import requests

@dataclass
class StripeConfig:
    secret_key: str         # sk_test_... / sk_live_...
    api_base: str = "https://api.stripe.com"
    timeout: int = 10

class StripeError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

def _form_items(params: dict, prefix: str = "") -> list[tuple[str, str]]:
    # Stripe wants nested form keys: metadata[bookingId]=..., payment_method_types[0]=card
    items = []
    for k, v in params.items():
        key = f"{prefix}[{k}]" if prefix else str(k)
        if v is None:
            continue
        if isinstance(v, dict):
            items.extend(_form_items(v, key))
        elif isinstance(v, (list, tuple)):
            for i, item in enumerate(v):
                if isinstance(item, dict):
                    items.extend(_form_items(item, f"{key}[{i}]"))
                else:
                    items.append((f"{key}[{i}]", str(item)))
        elif isinstance(v, bool):
            items.append((key, "true" if v else "false"))
        else:
            items.append((key, str(v)))
    return items

def _signature_parts(header: str) -> tuple[str | None, list[str]]:
    ts = None
    sigs = []
    for chunk in header.split(","):
        if "=" not in chunk:
            continue
        k, v = chunk.strip().split("=", 1)
        if k == "t":
            ts = v
        elif k == "v1":
            sigs.append(v)
    return ts, sigs

def compute_signature(secret: str, timestamp: str, payload: bytes) -> str:
    signed = timestamp.encode("utf-8") + b"." + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()

def verify_signature(payload: bytes, header: str | None, secret: str, tolerance: int = 300, now: float | None = None) -> bool:
    """Verify a Stripe-Signature header (t=<unix>,v1=<hex hmac-sha256 of "t.payload">).

    Returns False if the header is missing or malformed, no v1 signature matches,
    or the timestamp is outside `tolerance` seconds (replay protection).
    """
    if not header or not secret:
        return False
    ts, sigs = _signature_parts(header)
    if not ts or not sigs:
        return False
    try:
        ts_int = int(ts)
    except ValueError:
        return False
    expected = compute_signature(secret, ts, payload)
    if not any(hmac.compare_digest(expected, s) for s in sigs):
        return False
    if tolerance and abs((now if now is not None else time.time()) - ts_int) > tolerance:
        return False
    return True

class StripeClient:
    def __init__(self, cfg: StripeConfig):
        self.cfg = cfg

    def _headers(self, idempotency_key: str | None = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self.cfg.secret_key}",
            "Accept": "application/json",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def request(self, method: str, path: str, params: dict | None = None, idempotency_key: str | None = None) -> dict:
        url = f"{self.cfg.api_base.rstrip('/')}{path}"
        form = _form_items(params or {})
        kwargs = {"params": form} if method.upper() == "GET" else {"data": form}
        try:
            r = requests.request(method=method.upper(), url=url, headers=self._headers(idempotency_key),
                                 timeout=self.cfg.timeout, **kwargs)
        except requests.Timeout as e:
            raise StripeError(f"Stripe timeout after {self.cfg.timeout}s: {e}")
        except requests.RequestException as e:
            raise StripeError(f"Stripe unreachable: {e}")
        try:
            data = r.json() if r.text else {}
        except ValueError:
            data = {"raw": r.text}
        if r.status_code >= 400:
            err = data.get("error") or {}
            raise StripeError(f"Stripe {r.status_code}: {err.get('message') or data}", status_code=r.status_code)
        return data

    def create_payment_intent(self, *, amount: int, currency: str, metadata: dict, description: str, idempotency_key: str) -> dict:
        payload = {
            "amount": int(amount),
            "currency": currency.lower(),
            "payment_method_types": ["card"],
            "description": description,
            "metadata": metadata,
        }
        return self.request("POST", "/v1/payment_intents", payload, idempotency_key=idempotency_key)

    def retrieve_payment_intent(self, payment_intent_id: str) -> dict:
        return self.request("GET", f"/v1/payment_intents/{payment_intent_id}")

    def create_refund(self, *, payment_intent_id: str, idempotency_key: str) -> dict:
        return self.request("POST", "/v1/refunds", {"payment_intent": payment_intent_id}, idempotency_key=idempotency_key)
