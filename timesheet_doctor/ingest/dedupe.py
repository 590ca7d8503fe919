from __future__ import annotations


class FingerprintSet:
    """Fingerprints seen during one ingestion call.

    Only the first row with a given fingerprint is kept. Different rows that
    happen to share a fuzzy fingerprint are dropped as well.
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()
        self.dropped = 0

    def admit(self, fingerprint: str) -> bool:
        """Record ``fingerprint``; return False when it was already present."""
        if fingerprint in self._seen:
            self.dropped += 1
            return False
        self._seen.add(fingerprint)
        return True
