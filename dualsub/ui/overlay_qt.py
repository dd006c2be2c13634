from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List, Optional

from dualsub.contracts import DisplayEvent, DisplayEventKind

try:
    from PyQt6 import QtCore, QtGui, QtWidgets
    _PYQT_IMPORT_ERROR: ModuleNotFoundError | None = None
except ModuleNotFoundError as e:  # pragma: no cover - import guard path
    QtCore = None  # type: ignore[assignment]
    QtGui = None  # type: ignore[assignment]
    QtWidgets = None  # type: ignore[assignment]
    _PYQT_IMPORT_ERROR = e


@dataclass(frozen=True)
class OverlayLine:
    segment_id: int
    start_ts: float
    en: str
    ja: str = ""
    partial: bool = False
    fading: bool = False
    untranslated: bool = False


@dataclass
class OverlayConfig:
    show_en: bool = True
    max_lines: int = 3
    font_size_ja: int = 28
    font_size_en: int = 16
    padding_px: int = 14
    bg_opacity: int = 66
    hotkey_toggle_en: str = "H"
    hotkey_font_inc: str = "+"
    hotkey_font_dec: str = "-"
    hotkey_pause: str = "P"
    hotkey_quit: str = "Esc"


def apply_display_event(
    lines: List[OverlayLine],
    event: DisplayEvent,
    *,
    max_lines: int,
) -> List[OverlayLine]:
    """Fold one display event into the visible lines, oldest utterance first."""
    out = [ln for ln in lines if ln.segment_id != event.segment_id]
    current = next((ln for ln in lines if ln.segment_id == event.segment_id), None)

    if event.kind == DisplayEventKind.REMOVE:
        return out
    if event.kind == DisplayEventKind.SHOW_PARTIAL:
        line = OverlayLine(event.segment_id, event.start_ts, en=event.text, partial=True)
    elif event.kind == DisplayEventKind.SHOW_FINAL:
        line = OverlayLine(event.segment_id, event.start_ts, en=event.text)
    elif event.kind == DisplayEventKind.UPDATE_TRANSLATION:
        base = current or OverlayLine(event.segment_id, event.start_ts, en=event.source_text)
        line = replace(base, ja=event.text, untranslated=event.untranslated, partial=False)
    elif event.kind == DisplayEventKind.FADE:
        if current is None:
            return out
        line = replace(current, fading=True)
    else:
        return list(lines)

    out.append(line)
    out.sort(key=lambda ln: (ln.start_ts, ln.segment_id))
    return out[-max(1, int(max_lines)):]


def _escape(text: str) -> str:
    return (text or "").replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def render_lines_to_html(lines: List[OverlayLine], cfg: OverlayConfig) -> str:
    # newest last (bottom)
    parts: List[str] = []
    for ln in lines[-cfg.max_lines:]:
        en = _escape(ln.en)
        ja = _escape(ln.ja)
        opacity = 0.45 if ln.fading else 1.0
        style = "font-style:italic;" if ln.partial else ""

        if (cfg.show_en or not ja) and en:
            parts.append(
                f"<div style='font-size:{cfg.font_size_en}px; opacity:{opacity * 0.85:.2f}; "
                f"margin-bottom:2px; {style}'>{en}</div>"
            )
        if ja:
            parts.append(
                f"<div style='font-size:{cfg.font_size_ja}px; font-weight:600; opacity:{opacity:.2f};'>{ja}</div>"
            )
        parts.append("<div style='height:10px;'></div>")
    return "".join(parts).strip()


if QtWidgets is not None:
    class SubtitleOverlay(QtWidgets.QWidget):
        escape_requested = QtCore.pyqtSignal()
        """
        Always-on-top subtitle overlay driven by display events.

        Hotkeys:
          - H : toggle EN line
          - + / - : font size up/down
          - P : pause/unpause updates
          - ESC : quit
          - Drag with mouse to move
        """

        def __init__(self, cfg: OverlayConfig | None = None):
            super().__init__()
            self.cfg = cfg or OverlayConfig()
            self._paused = False
            self._lines: List[OverlayLine] = []

            self.setWindowFlags(
                QtCore.Qt.WindowType.FramelessWindowHint
                | QtCore.Qt.WindowType.WindowStaysOnTopHint
                | QtCore.Qt.WindowType.Tool
            )
            self.setAttribute(QtCore.Qt.WidgetAttribute.WA_TranslucentBackground, True)

            self.panel = QtWidgets.QFrame(self)
            alpha = max(0, min(255, int(round((self.cfg.bg_opacity / 100.0) * 255.0))))
            self.panel.setStyleSheet(
                f"""
                QFrame {{
                    background-color: rgba(0, 0, 0, {alpha});
                    border-radius: 16px;
                }}
                """
            )

            self.label = QtWidgets.QTextBrowser(self.panel)
            self.label.setReadOnly(True)
            self.label.setOpenExternalLinks(False)
            self.label.setTextInteractionFlags(QtCore.Qt.TextInteractionFlag.NoTextInteraction)
            self.label.setFocusPolicy(QtCore.Qt.FocusPolicy.NoFocus)
            self.label.setStyleSheet("QTextBrowser { background: transparent; border: none; color: white; }")
            self.label.setVerticalScrollBarPolicy(QtCore.Qt.ScrollBarPolicy.ScrollBarAlwaysOff)
            self.label.setHorizontalScrollBarPolicy(QtCore.Qt.ScrollBarPolicy.ScrollBarAlwaysOff)

            layout = QtWidgets.QVBoxLayout(self.panel)
            layout.setContentsMargins(
                self.cfg.padding_px, self.cfg.padding_px, self.cfg.padding_px, self.cfg.padding_px
            )
            layout.addWidget(self.label)

            outer = QtWidgets.QVBoxLayout(self)
            outer.setContentsMargins(0, 0, 0, 0)
            outer.addWidget(self.panel)

            self.resize(900, 220)
            self._move_bottom_center()

            self._drag_pos: Optional[QtCore.QPoint] = None
            self.label.viewport().installEventFilter(self)
            self._refresh()

        def set_paused(self, paused: bool) -> None:
            self._paused = paused

        def add_event(self, event: DisplayEvent) -> None:
            # removals still apply while paused so nothing lingers
            if self._paused and event.kind != DisplayEventKind.REMOVE:
                return
            self._lines = apply_display_event(self._lines, event, max_lines=max(1, int(self.cfg.max_lines)))
            self._refresh()

        def _refresh(self) -> None:
            self.label.setHtml(render_lines_to_html(self._lines, self.cfg))
            bar = self.label.verticalScrollBar()
            bar.setValue(bar.maximum())

        def _move_bottom_center(self) -> None:
            screen = QtGui.QGuiApplication.primaryScreen()
            if screen is None:
                return
            geom = screen.availableGeometry()
            x = geom.left() + max(0, (geom.width() - self.width()) // 2)
            y = geom.top() + max(0, geom.height() - self.height() - 40)
            self.move(x, y)

        def eventFilter(self, obj: QtCore.QObject, ev: QtCore.QEvent) -> bool:
            if obj is self.label.viewport() and isinstance(ev, QtGui.QMouseEvent):
                if ev.type() == QtCore.QEvent.Type.MouseButtonPress and ev.button() == QtCore.Qt.MouseButton.LeftButton:
                    self._drag_pos = ev.globalPosition().toPoint() - self.frameGeometry().topLeft()
                    return True
                if ev.type() == QtCore.QEvent.Type.MouseMove and self._drag_pos is not None:
                    self.move(ev.globalPosition().toPoint() - self._drag_pos)
                    return True
                if ev.type() == QtCore.QEvent.Type.MouseButtonRelease:
                    self._drag_pos = None
                    return True
            return super().eventFilter(obj, ev)

        # ----- Drag to move -----
        def mousePressEvent(self, ev: QtGui.QMouseEvent) -> None:
            if ev.button() == QtCore.Qt.MouseButton.LeftButton:
                self._drag_pos = ev.globalPosition().toPoint() - self.frameGeometry().topLeft()
            super().mousePressEvent(ev)

        def mouseMoveEvent(self, ev: QtGui.QMouseEvent) -> None:
            if self._drag_pos is not None and (ev.buttons() & QtCore.Qt.MouseButton.LeftButton):
                self.move(ev.globalPosition().toPoint() - self._drag_pos)
            super().mouseMoveEvent(ev)

        def mouseReleaseEvent(self, ev: QtGui.QMouseEvent) -> None:
            self._drag_pos = None
            super().mouseReleaseEvent(ev)

        # ----- Hotkeys -----
        def keyPressEvent(self, ev: QtGui.QKeyEvent) -> None:
            if self._matches_hotkey(ev, self.cfg.hotkey_quit):
                self.escape_requested.emit()
                return

            if self._matches_hotkey(ev, self.cfg.hotkey_toggle_en):
                self.cfg.show_en = not self.cfg.show_en
                self._refresh()
                return

            if self._matches_hotkey(ev, self.cfg.hotkey_font_inc):
                self.cfg.font_size_ja += 2
                self.cfg.font_size_en += 1
                self._refresh()
                return

            if self._matches_hotkey(ev, self.cfg.hotkey_font_dec):
                self.cfg.font_size_ja = max(14, self.cfg.font_size_ja - 2)
                self.cfg.font_size_en = max(10, self.cfg.font_size_en - 1)
                self._refresh()
                return

            if self._matches_hotkey(ev, self.cfg.hotkey_pause):
                self._paused = not self._paused
                return

            super().keyPressEvent(ev)

        def _matches_hotkey(self, ev: QtGui.QKeyEvent, binding: str) -> bool:
            target = self._normalize_hotkey(binding)
            if not target:
                return False
            seq = QtGui.QKeySequence(ev.keyCombination())
            current = seq.toString(QtGui.QKeySequence.SequenceFormat.PortableText)
            return self._normalize_hotkey(current) == target

        @staticmethod
        def _normalize_hotkey(value: str) -> str:
            raw = str(value or "").strip()
            if not raw:
                return ""
            key = QtGui.QKeySequence(raw).toString(QtGui.QKeySequence.SequenceFormat.PortableText).strip() or raw
            kl = key.lower()
            if kl in ("escape",):
                return "esc"
            if kl in ("plus", "equal"):
                return "+"
            if kl in ("minus", "underscore"):
                return "-"
            return kl
else:
    class SubtitleOverlay:
        def __init__(self, cfg: OverlayConfig | None = None) -> None:
            del cfg
            raise ModuleNotFoundError(
                "PyQt6 is required for SubtitleOverlay. Install with: python -m pip install PyQt6"
            ) from _PYQT_IMPORT_ERROR
