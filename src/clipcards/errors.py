from pathlib import Path

# Subprocess stderr is cut to this many characters before it reaches a message.
STDERR_EXCERPT_CHARS = 200


class ClipCardsError(Exception):
    """Base class for all ClipCards errors."""


class ConfigError(ClipCardsError):
    def __init__(self, path: Path | str, detail: str) -> None:
        label = path.name if isinstance(path, Path) else path
        super().__init__(
            f"Invalid settings '{label}'.\n"
            f"  Cause: {detail}\n"
            f"  Check: Is the file valid JSON matching the Settings schema?"
        )
        self.path = path
        self.detail = detail


class FormatError(ClipCardsError):
    def __init__(self, source: str, detail: str) -> None:
        super().__init__(
            f"Cannot parse caption file '{source}'.\n"
            f"  Cause: {detail}\n"
            f"  Check: Is the file valid SRT, WebVTT or ASS/SSA?\n"
            f"  Tip: Try re-saving the file as UTF-8 in a text editor."
        )
        self.source = source
        self.detail = detail


class TransientProviderError(ClipCardsError):
    def __init__(self, provider: str, detail: str) -> None:
        super().__init__(
            f"Sentence selection request to '{provider}' failed.\n"
            f"  Cause: {detail}\n"
            f"  Check: Is the provider reachable and the API key / model name valid?"
        )
        self.provider = provider
        self.detail = detail


class ProviderResponseError(ClipCardsError):
    def __init__(self, provider: str, detail: str) -> None:
        super().__init__(
            f"Sentence selection response from '{provider}' could not be understood.\n"
            f"  Cause: {detail}\n"
            f"  Check: Does the model follow JSON instructions? Try a larger model."
        )
        self.provider = provider
        self.detail = detail


class NoTranscriptError(ClipCardsError):
    def __init__(self, source: str) -> None:
        super().__init__(
            f"No sentences found in the transcript (source: {source}).\n"
            f"  Check: Does the video contain speech, and does the subtitle file contain cues?"
        )
        self.source = source


class NoSelectionError(ClipCardsError):
    def __init__(self, provider: str, offered: int) -> None:
        super().__init__(
            f"'{provider}' selected no usable sentences out of {offered} offered.\n"
            f"  Check: Do the target language settings match the video's language?"
        )
        self.provider = provider
        self.offered = offered


class ExternalToolError(ClipCardsError):
    def __init__(self, tool: str, returncode: int | None, detail: str) -> None:
        code = "could not be started" if returncode is None else f"exited with code {returncode}"
        super().__init__(
            f"{tool} {code}.\n"
            f"  Cause: {detail[:STDERR_EXCERPT_CHARS]}\n"
            f"  Check: Is {tool} installed and in PATH? Is the input file readable?"
        )
        self.tool = tool
        self.returncode = returncode
        self.detail = detail[:STDERR_EXCERPT_CHARS]


class InputFileError(ClipCardsError):
    def __init__(self, path: Path, detail: str) -> None:
        super().__init__(
            f"Cannot read input video '{path.name}'.\n"
            f"  Cause: {detail}\n"
            f"  Check: Does the file still exist, and is it readable?"
        )
        self.path = path
        self.detail = detail


class PackagingError(ClipCardsError):
    def __init__(self, output_path: Path, detail: str) -> None:
        super().__init__(
            f"Failed to build flashcard archive '{output_path.name}'.\n"
            f"  Cause: {detail}\n"
            f"  Check: Is there sufficient disk space in the workspace directory?"
        )
        self.output_path = output_path
        self.detail = detail


class CancelledError(ClipCardsError):
    def __init__(self, where: str = "pipeline") -> None:
        super().__init__(f"Cancelled during {where}.")
        self.where = where


class TranscriptionError(ClipCardsError):
    def __init__(self, engine: str, detail: str) -> None:
        super().__init__(
            f"Transcription with '{engine}' failed.\n"
            f"  Cause: {detail}\n"
            f"  Check: Is the API key valid, or is the whisper.cpp model downloaded?"
        )
        self.engine = engine
        self.detail = detail
