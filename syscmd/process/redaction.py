"""Secret masking for every human-facing surface.

Masking happens on live-echoed output, on the displayed command line and on
raised error messages. Captured result buffers are left untouched unless
``RunnerSettings.redact_captured_output`` is enabled.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping

from syscmd.core.config import DEFAULT_SENSITIVE_ENV_VARS, RunnerSettings


def redact(text: str, secrets: Iterable[str], *, mask: str = "******") -> str:
    """Replaces every exact occurrence of each secret in ``text`` with ``mask``."""

    return Redactor(secrets, environ={}, mask=mask).redact(text)


class Redactor:
    """Masks a fixed set of secrets.

    The secret set is the union of the explicit ``secrets`` and the values of
    the allow-listed ``sensitive_env_vars`` found in ``environ`` (the invoking
    process's environment by default).
    """

    def __init__(
        self,
        secrets: Iterable[str] = (),
        *,
        environ: Mapping[str, str] | None = None,
        sensitive_env_vars: Iterable[str] = DEFAULT_SENSITIVE_ENV_VARS,
        mask: str = "******",
    ) -> None:
        provider = os.environ if environ is None else environ
        collected = {secret for secret in secrets if secret}
        for name in sensitive_env_vars:
            value = provider.get(name)
            if value:
                collected.add(value)
        # Longest first so a secret containing another is masked as a whole.
        self._secrets = tuple(sorted(collected, key=lambda s: (-len(s), s)))
        self._encoded = tuple(secret.encode("utf-8") for secret in self._secrets)
        self._mask = mask

    @classmethod
    def from_settings(
        cls,
        secrets: Iterable[str] = (),
        *,
        settings: RunnerSettings,
        environ: Mapping[str, str] | None = None,
    ) -> Redactor:
        return cls(
            secrets,
            environ=environ,
            sensitive_env_vars=settings.sensitive_env_vars,
            mask=settings.mask,
        )

    @property
    def secrets(self) -> tuple[str, ...]:
        return self._secrets

    def redact(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, self._mask)
        return text

    def redact_bytes(self, data: bytes) -> bytes:
        """Byte-level variant used for echoed chunks, so no decoding is needed."""

        if not self._encoded:
            return data
        mask = self._mask.encode("utf-8")
        for secret in self._encoded:
            data = data.replace(secret, mask)
        return data
