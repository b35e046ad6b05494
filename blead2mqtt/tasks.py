import asyncio
import inspect
import math
import time
from numbers import Real
from typing import Awaitable, Optional, TypeVar, Union

T = TypeVar("T")


def create_timestamp() -> int:
    """エポックからのミリ秒。"""
    return int(time.time() * 1000)


def _convert_to_error(error: Union[BaseException, str]) -> BaseException:
    if isinstance(error, str):
        return asyncio.TimeoutError(error)
    return error


def _discard(awaitable: Awaitable) -> None:
    # 待たずに捨てる awaitable の後始末（未 await 警告と保留タスクを残さない）
    if inspect.iscoroutine(awaitable):
        awaitable.close()
    elif isinstance(awaitable, asyncio.Future):
        awaitable.cancel()


async def time_limit(
    awaitable: Awaitable[T],
    timeout: Optional[float],
    error: Union[BaseException, str, None] = None,
) -> T:
    """
    awaitable をタイムアウト付きで待つ。

    - timeout が None の場合はそのまま待つ（タイムアウトなし）
    - timeout <= 0 の場合は待たずに error を送出する
    - timeout > 0 の場合は先に決着した方を結果とし、負けた側はキャンセルする

    error は例外インスタンスまたはメッセージ文字列（asyncio.TimeoutError になる）。
    """
    if timeout is None:
        return await awaitable
    if isinstance(timeout, bool) or not isinstance(timeout, Real) or math.isnan(timeout):
        _discard(awaitable)
        raise TypeError("timeout must either be None or a number")
    if error is None:
        error = f"Awaitable did not complete within {timeout} seconds"
    if timeout <= 0:
        _discard(awaitable)
        raise _convert_to_error(error)
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise _convert_to_error(error) from None


__all__ = ["create_timestamp", "time_limit"]
