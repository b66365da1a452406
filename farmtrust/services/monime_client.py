import hashlib
import hmac
import requests


class MonimeError(Exception):
    pass


class MonimeClient:
    """Thin client for the Monime payment orchestration API (Orange Money / Afrimoney)."""

    def __init__(self, base_url: str, api_key: str, secret_key: str, space_id: str, timeout: float = 6):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.secret_key = secret_key
        self.space_id = space_id
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> "MonimeClient":
        return cls(
            base_url=config["MONIME_BASE_URL"],
            api_key=config["MONIME_API_KEY"],
            secret_key=config["MONIME_SECRET_KEY"],
            space_id=config["MONIME_SPACE_ID"],
            timeout=config["MONIME_TIMEOUT"],
        )

    def is_configured(self) -> bool:
        return bool(self.api_key and self.secret_key and self.space_id)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "X-API-Key": self.api_key,
            "X-Space-ID": self.space_id,
            "Content-Type": "application/json",
        }

    def get_payment(self, reference: str) -> dict:
        """Return the payment payload for a reference, e.g. {"status": "completed", ...}."""
        try:
            r = requests.get(f"{self.base_url}/v1/payments/{reference}",
                             headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            raise MonimeError(f"upstream_unreachable: {e}") from e
        if not r.ok:
            raise MonimeError(f"HTTP {r.status_code}: {r.text[:200]}")
        try:
            body = r.json()
        except ValueError as e:
            raise MonimeError("invalid JSON from Monime") from e
        return body.get("data") or body

    def sign(self, raw_body: bytes) -> str:
        digest = hmac.new(self.secret_key.encode(), raw_body, hashlib.sha256).hexdigest()
        return f"sha256={digest}"

    def validate_webhook_signature(self, raw_body: bytes, signature: str) -> bool:
        if not self.secret_key or not signature:
            return False
        return hmac.compare_digest(self.sign(raw_body), signature)
