import logging
import subprocess
from typing import Optional, Sequence

from image_extractor.application.ports import CommandResult, CommandRunnerPort
from image_extractor.domain.errors import CommandFailedError, CommandTimeoutError

logger = logging.getLogger(__name__)


class SubprocessCommandRunner(CommandRunnerPort):
    """subprocess で外部コマンドを実行するアダプターです。"""

    def run(self, args: Sequence[str], timeout_sec: Optional[float] = None) -> CommandResult:
        """コマンドを実行し、標準出力と標準エラーを返します。"""

        command = [str(arg) for arg in args]
        logger.debug("running command: %s", " ".join(command))

        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=timeout_sec,
            )
        except subprocess.TimeoutExpired as ex:
            raise CommandTimeoutError(
                "{0} が {1} 秒以内に終了しませんでした。".format(command[0], timeout_sec),
                command=command,
                stderr=_decode(ex.stderr),
            ) from ex
        except OSError as ex:
            raise CommandFailedError(
                "{0} を起動できませんでした: {1}".format(command[0], ex),
                command=command,
            ) from ex

        if completed.returncode != 0:
            raise CommandFailedError(
                "{0} が終了コード {1} で失敗しました。\nstderr:\n{2}".format(
                    command[0],
                    completed.returncode,
                    completed.stderr,
                ),
                command=command,
                returncode=completed.returncode,
                stderr=completed.stderr,
            )

        return CommandResult(
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )


def _decode(output) -> str:
    # TimeoutExpired は text=True でも bytes を持つことがある
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output
