import logging
import subprocess
from typing import List, Optional, Type

logger = logging.getLogger(__name__)


def run_command(
    args: List[str],
    error_cls: Type[Exception],
    timeout: Optional[float] = None,
    input_text: Optional[str] = None,
) -> str:
    """Run an external binary without a shell and return its stdout.

    Every failure mode is re-raised as ``error_cls`` so callers only deal
    with the error type of their own layer.
    """
    cmd = " ".join(args)
    logger.debug(f"    > {cmd}")
    try:
        proc = subprocess.run(
            args,
            input=input_text,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            check=True,
            timeout=timeout,
        )
    except FileNotFoundError:
        raise error_cls(f"{args[0]} binary not found") from None
    except PermissionError:
        raise error_cls(f"Permission denied executing {args[0]}") from None
    except subprocess.TimeoutExpired:
        raise error_cls(f"Timed out after {timeout}s: {cmd}") from None
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or "").strip() or f"exit status {e.returncode}"
        raise error_cls(f"'{cmd}' failed: {detail}") from e
    return proc.stdout
