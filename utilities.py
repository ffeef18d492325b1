import inspect
import time
from datetime import datetime, timezone
import os

import psutil
from rich import print as _print
from rich.markup import escape

# Mapping of logType to symbols
LOG_TYPE_SYMBOLS = {
    'SUCCESS': ('^^^', '^^^'),
    'FAILURE': ('###', '###'),
    'STATE': ('~~~', '~~~'),
    'INFO': ('---', '---'),
    'IMPORTANT': ('===', '==='),
    'CRITICAL': ('***', '***'),
    'EXCEPTION': ('!!!', '!!!'),
    'WARNING': ('(((', ')))'),
    'DEBUG': ('[[[', ']]]'),
    'ATTEMPT': ('???', '???'),
    'STARTING': ('>>>', '>>>'),
    'PROGRESS': ('vvv', 'vvv'),
    'COMPLETED': ('<<<', '<<<'),
    'HEADER': ('%%%', '%%%'),
}

# Mapping of logType to styles
LOG_TYPE_STYLES = {
    'SUCCESS': 'green',
    'FAILURE': 'red bold',
    'STATE': 'cyan',
    'INFO': 'blue',
    'IMPORTANT': 'magenta',
    'CRITICAL': 'red bold',
    'EXCEPTION': 'red bold',
    'WARNING': 'yellow',
    'DEBUG': 'white',
    'ATTEMPT': 'cyan',
    'STARTING': 'green',
    'PROGRESS': 'blue',
    'COMPLETED': 'green',
    'HEADER': 'magenta bold',
}

_verbose = True


def set_verbose(enabled: bool) -> None:
    """
    Enable or suppress DEBUG lines from Print.

    The flag is process-wide: it applies to every pipeline and thread.
    """
    global _verbose
    _verbose = bool(enabled)


def is_verbose() -> bool:
    return _verbose


def Print(logType: str, message: str) -> None:
    """
    Prints a log message with timestamp, function name, symbols wrapping the logType, and the message.

    DEBUG messages are dropped while verbose output is disabled (see set_verbose).
    """
    logTypeUpper = logType.upper()
    if logTypeUpper == 'DEBUG' and not _verbose:
        return

    try:
        current_time = time.time()
        timestamp = datetime.fromtimestamp(current_time, tz=timezone.utc).isoformat(timespec='microseconds') + 'Z'

        before_symbol, after_symbol = LOG_TYPE_SYMBOLS.get(logTypeUpper, ('', ''))
        formattedLogType = f"{before_symbol} {logTypeUpper} {after_symbol}"

        style = LOG_TYPE_STYLES.get(logTypeUpper, '')
        if style:
            formattedLogType = f"[{style}]{formattedLogType}[/{style}]"

        # Caller's frame only; inspect.stack() would read source for every frame
        frame = inspect.currentframe()
        caller = frame.f_back if frame is not None else None
        function_name = caller.f_code.co_name if caller is not None else '?'
        del frame, caller

        paddedFunctionName = function_name.ljust(40)

        # Messages may carry stderr text with square brackets
        safe_message = escape(message)

        _print(f"{timestamp} {formattedLogType} {paddedFunctionName} {safe_message}")

    except Exception as e:
        print(f"Something went wrong when attempting to print.\nError: {e}")


def format_size(num_bytes: int) -> str:
    """Human-readable size for log lines (KB below one megabyte, MB above)."""
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    return f"{num_bytes / (1024 * 1024):.2f} MB"


def CPU_and_Mem_usage() -> str:
    """
    Returns a string with the CPU usage and memory usage of the current process.
    """
    current_process = psutil.Process(os.getpid())
    cpu_usage = psutil.cpu_percent(interval=0.5)
    memory_info = current_process.memory_info()
    memory_usage_mb = memory_info.rss / (1024 ** 2)
    return f"CPU Usage: {cpu_usage}%, Process Memory Usage: {memory_usage_mb:.2f} MB"
