"""
Schedule parsing - Turns the scheduling dialog's raw output into a
ScheduleConfig, falling back to safe defaults instead of raising.
调度解析 —— 将调度对话框的原始输出转为 ScheduleConfig，
非法输入回退到安全默认值，而不是抛出异常。

Fallbacks:
  - unknown mode                 -> IMMEDIATE
  - non-numeric or < 1 interval  -> DEFAULT_RECURRING_INTERVAL (1)
  - unknown unit                 -> DAYS
  - unparsable specific time     -> now + 24h
回退规则：
  - 未知模式                     -> IMMEDIATE
  - 非数字或小于 1 的间隔         -> DEFAULT_RECURRING_INTERVAL（1）
  - 未知单位                     -> DAYS
  - 无法解析的指定时间            -> 当前时间 + 24 小时
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

import config
from schema import IntervalUnit, RecurringSchedule, ScheduleConfig, ScheduleMode

logger = logging.getLogger(__name__)


def _first(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def _parse_mode(value: Any) -> ScheduleMode:
    try:
        return ScheduleMode(str(value).strip().upper())
    except ValueError:
        if value is not None:
            logger.warning("[Schedule] Unknown mode %r, falling back to IMMEDIATE", value)
        return ScheduleMode.IMMEDIATE


def _parse_interval(value: Any) -> int:
    default = config.DEFAULT_RECURRING_INTERVAL
    try:
        interval = int(float(str(value).strip()))
    except (TypeError, ValueError, OverflowError):
        logger.warning("[Schedule] Invalid interval %r, falling back to %d", value, default)
        return default
    if interval < 1:
        logger.warning("[Schedule] Interval %d below 1, falling back to %d", interval, default)
        return default
    return interval


def _parse_unit(value: Any) -> IntervalUnit:
    try:
        return IntervalUnit(str(value).strip().upper())
    except ValueError:
        if value is not None:
            logger.warning("[Schedule] Unknown interval unit %r, falling back to DAYS", value)
        return IntervalUnit.DAYS


def _parse_specific_time(value: Any, now: datetime) -> str:
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip()).isoformat(timespec="minutes")
        except ValueError:
            logger.warning("[Schedule] Invalid start time %r, falling back to now + 24h", value)
    return (now + timedelta(days=1)).isoformat(timespec="minutes")


def parse_schedule(raw: dict[str, Any] | None, now: datetime | None = None) -> ScheduleConfig:
    """
    Build a ScheduleConfig from the dialog payload. Never raises.
    从对话框负载构建 ScheduleConfig。从不抛出异常。

    Accepts both camelCase (dialog) and snake_case keys. `is_active` follows
    the dialog's save rule: active for every mode except IMMEDIATE.
    同时接受 camelCase（对话框）和 snake_case 键。`is_active` 遵循对话框的保存规则：
    除 IMMEDIATE 外的模式均为激活。
    """
    raw = raw if isinstance(raw, dict) else {}
    mode = _parse_mode(raw.get("mode"))

    recurring = None
    if mode == ScheduleMode.RECURRING:
        rec_raw = raw.get("recurring")
        rec_raw = rec_raw if isinstance(rec_raw, dict) else {}
        cron = _first(rec_raw, "cronExpression", "cron_expression")
        recurring = RecurringSchedule(
            interval_value=_parse_interval(_first(rec_raw, "intervalValue", "interval_value")),
            interval_unit=_parse_unit(_first(rec_raw, "intervalUnit", "interval_unit")),
            cron_expression=str(cron) if cron else None,
        )

    specific_time = None
    if mode == ScheduleMode.SPECIFIC_TIME:
        specific_time = _parse_specific_time(
            _first(raw, "specificTime", "specific_time"), now or datetime.now(),
        )

    return ScheduleConfig(
        mode=mode,
        recurring=recurring,
        specific_time=specific_time,
        is_active=mode != ScheduleMode.IMMEDIATE,
    )


def describe(schedule: ScheduleConfig) -> str:
    """Short human-readable form, e.g. 'every 2 days'."""
    if schedule.mode == ScheduleMode.RECURRING and schedule.recurring is not None:
        rec = schedule.recurring
        if rec.cron_expression:
            return f"cron '{rec.cron_expression}'"
        unit = rec.interval_unit.value.lower()
        if rec.interval_value == 1:
            unit = unit.rstrip("s")
        return f"every {rec.interval_value} {unit}"
    if schedule.mode == ScheduleMode.SPECIFIC_TIME:
        return f"at {schedule.specific_time}"
    return "immediately"
