from __future__ import annotations


def summarize_exception(detail: str, *, max_len: int = 220) -> str:
    text = str(detail or "").strip()
    if not text:
        return "Unknown runtime error."
    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
    if not lines:
        return "Unknown runtime error."
    for ln in reversed(lines):
        if ln.startswith(("File ", "^", "Traceback ", "The above exception", "During handling")):
            continue
        out = ln
        break
    else:
        out = lines[-1]
    if len(out) > max_len:
        return out[: max_len - 3].rstrip() + "..."
    return out


def hint_for_exception(summary: str) -> str:
    s = str(summary or "").lower()
    if "no module named" in s:
        return "A required package is missing in this virtualenv. Reinstall dependencies and retry."
    if "config file not found" in s:
        return "Configured JSON file is missing. Update the config path or restore the file."
    if "unknown profile" in s:
        return "active_profile names a profile that is not in the config's profiles list."
    if "portaudio" in s or ("sounddevice" in s and "failed" in s) or "capture stream" in s:
        return "Microphone init failed. Check input device selection (--list-devices) and app mic permissions."
    if "frame source failed" in s or "wav" in s:
        return "Audio input stopped. Check the device or the replay file (16-bit PCM WAV)."
    if "argos" in s or "language package" in s:
        return "Translation model unavailable. Install the Argos en->ja package or use --translator stub."
    if "faster-whisper" in s or "ctranslate2" in s:
        return "Speech recognition failed to load. Check the model name and --asr-device."
    return "Check logs for full traceback."
