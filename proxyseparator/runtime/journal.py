"""On-disk journal of the network state to restore after a run."""

from __future__ import annotations

import dataclasses
import json
import os
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional, Union


class RecoveryError(Exception):
    """Raised when the recovery journal cannot be read, written or removed."""

    code = "ERR_RECOVERY_FAILED"


def _wrap(message: str, exc: BaseException) -> RecoveryError:
    error = RecoveryError(f"{message}: {exc}")
    error.__cause__ = exc
    return error


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    raise TypeError(f"cannot serialize {type(value).__name__}")


class RecoveryJournal:
    """A JSON snapshot file kept while the runtime changes system settings."""

    def __init__(self, path: Optional[Union[str, os.PathLike]] = None) -> None:
        self.path: Optional[Path] = Path(path) if path else None

    def exists(self) -> bool:
        if self.path is None:
            return False
        try:
            self.path.stat()
        except OSError:
            return False
        return True

    def load(self) -> dict[str, Any]:
        """Read the saved snapshot."""
        if self.path is None:
            raise RecoveryError("恢复 journal 路径未配置")
        try:
            data = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise _wrap("读取恢复 journal 失败", exc) from exc
        try:
            snapshot = json.loads(data)
        except ValueError as exc:
            raise _wrap("解析恢复 journal 失败", exc) from exc
        if not isinstance(snapshot, dict):
            raise RecoveryError("解析恢复 journal 失败: 不是 JSON 对象")
        return snapshot

    def save(self, snapshot: Union[Mapping[str, Any], Any]) -> None:
        """Write ``snapshot`` (a mapping or dataclass) as indented JSON."""
        if self.path is None:
            raise RecoveryError("恢复 journal 路径未配置")
        try:
            self.path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
        except OSError as exc:
            raise _wrap("创建恢复目录失败", exc) from exc
        try:
            if dataclasses.is_dataclass(snapshot) and not isinstance(snapshot, type):
                snapshot = dataclasses.asdict(snapshot)
            data = json.dumps(snapshot, indent=2, ensure_ascii=False, default=_encode)
        except (TypeError, ValueError) as exc:
            raise _wrap("序列化恢复 journal 失败", exc) from exc
        try:
            self.path.write_text(data, encoding="utf-8")
        except OSError as exc:
            raise _wrap("写入恢复 journal 失败", exc) from exc

    def remove(self) -> None:
        """Delete the journal; a missing file is not an error."""
        if self.path is None:
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise _wrap("删除恢复 journal 失败", exc) from exc