"""
Progress reporting and run summary for a OneNote import.

The reporter is the channel through which the import tells the user what
happened: a status line, overall progress, and the outcome of every page and
attachment. At the end of a run it produces a summary for console display
and JSON export.
"""

import json
import logging
import sys
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from tqdm import tqdm


class ProgressReporter:
    """Collects per-page and per-attachment outcomes and renders progress."""

    def __init__(
        self,
        show_progress: Optional[bool] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the progress reporter.

        Args:
            show_progress: Draw a tqdm progress bar (default: when stdout is a TTY)
            logger: Optional logger instance
            clock: Time source used for the run duration
        """
        self.logger = logger or logging.getLogger('onenote_markdown_migrator.orchestrator.report')
        self.show_progress = sys.stdout.isatty() if show_progress is None else show_progress
        self.clock = clock

        self.started_at = clock()
        self.cancelled = False
        self.abort_reason: Optional[str] = None
        self.last_status: Optional[str] = None
        self.progress = (0, 0)

        self.notes: Dict[str, List[Dict[str, Any]]] = {
            'succeeded': [],
            'skipped': [],
            'failed': []
        }
        self.attachments: Dict[str, List[Dict[str, Any]]] = {
            'succeeded': [],
            'failed': []
        }
        self.failed_sections: List[Dict[str, Any]] = []

        self._bar = None

    def status(self, text: str) -> None:
        self.last_status = text
        self.logger.info(text)
        if self._bar is not None:
            self._bar.set_description_str(text[:40])

    def report_progress(self, done: int, total: int) -> None:
        self.progress = (done, total)
        if not self.show_progress:
            return

        if self._bar is None or self._bar.total != total:
            self._close_bar()
            self._bar = tqdm(total=total, unit='page', leave=False)
        self._bar.n = done
        self._bar.refresh()

    def report_note_success(self, page_id: str, title: Optional[str] = None) -> None:
        self.notes['succeeded'].append({'id': page_id, 'title': title})
        self.logger.debug(f"Imported page {title or page_id}")

    def report_note_skipped(self, page_id: str, reason: Optional[str] = None) -> None:
        self.notes['skipped'].append({'id': page_id, 'reason': reason})
        self.logger.debug(f"Skipped page {page_id}: {reason}")

    def report_note_failed(self, page_id: str, reason: Optional[str] = None) -> None:
        self.notes['failed'].append({'id': page_id, 'reason': reason})
        self.logger.error(f"Failed to import page {page_id}: {reason}")

    def report_section_failed(self, section_id: str, name: str, reason: Optional[str] = None) -> None:
        """A section whose pages could not be listed; none of its pages were attempted."""
        self.failed_sections.append({'id': section_id, 'name': name, 'reason': reason})
        self.logger.error(f"Failed to list pages of section '{name}': {reason}")

    def report_attachment_success(self, name: str) -> None:
        self.attachments['succeeded'].append({'name': name})

    def report_failed(self, name: str, reason: Optional[str] = None) -> None:
        self.attachments['failed'].append({'name': name, 'reason': reason})
        self.logger.warning(f"Failed to import {name}: {reason}")

    def report_aborted(self, reason: str) -> None:
        self.abort_reason = reason

    def cancel(self) -> None:
        """Request cancellation; the import stops at the next page boundary."""
        if not self.cancelled:
            self.logger.warning("Cancellation requested, stopping after the current page")
        self.cancelled = True

    def is_cancelled(self) -> bool:
        return self.cancelled

    def close(self) -> None:
        self._close_bar()

    def _close_bar(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None

    def summary(self) -> Dict[str, Any]:
        """Summary of the run so far."""
        duration = self.clock() - self.started_at
        return {
            'pages': {
                'succeeded': len(self.notes['succeeded']),
                'skipped': len(self.notes['skipped']),
                'failed': len(self.notes['failed']),
            },
            'attachments': {
                'succeeded': len(self.attachments['succeeded']),
                'failed': len(self.attachments['failed']),
            },
            'sections_failed': len(self.failed_sections),
            'aborted': self.abort_reason is not None,
            'abort_reason': self.abort_reason,
            'cancelled': self.cancelled,
            'duration_seconds': duration,
            'duration_formatted': self._format_duration(duration),
            'failures': self.failed_sections + self.notes['failed'] + self.attachments['failed'],
            'timestamp': datetime.now().isoformat()
        }

    def _format_duration(self, seconds: float) -> str:
        """Format duration in human-readable format."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        elif seconds < 3600:
            minutes = int(seconds // 60)
            secs = int(seconds % 60)
            return f"{minutes}m {secs}s"
        else:
            hours = int(seconds // 3600)
            minutes = int((seconds % 3600) // 60)
            secs = int(seconds % 60)
            return f"{hours}h {minutes}m {secs}s"

    def format_console_report(self, summary: Optional[Dict[str, Any]] = None) -> str:
        """Format the summary for console display."""
        summary = summary or self.summary()
        pages = summary['pages']
        attachments = summary['attachments']

        sections = [
            "=" * 60,
            "IMPORT SUMMARY",
            "=" * 60,
            f"Pages imported:       {pages['succeeded']}",
            f"Pages skipped:        {pages['skipped']}",
            f"Sections failed:      {summary['sections_failed']}",
            f"Pages failed:         {pages['failed']}",
            f"Attachments saved:    {attachments['succeeded']}",
            f"Attachments failed:   {attachments['failed']}",
            f"Duration:             {summary['duration_formatted']}",
        ]
        if summary['abort_reason']:
            sections.append(f"Aborted:              {summary['abort_reason']}")

        if summary['failures']:
            sections.append("")
            sections.append("Failures:")
            for failure in summary['failures'][:20]:
                label = failure.get('id') or failure.get('name')
                sections.append(f"  - {label}: {failure.get('reason')}")
            if len(summary['failures']) > 20:
                sections.append(f"  ... and {len(summary['failures']) - 20} more")

        sections.append("=" * 60)
        return "\n".join(sections)

    def export_json_report(self, summary: Dict[str, Any], filepath: str) -> None:
        """
        Export report to JSON file.

        Args:
            summary: Run summary dictionary
            filepath: Output file path
        """
        try:
            with open(filepath, 'w', encoding='utf-8') as f:
                json.dump(summary, f, indent=2, ensure_ascii=False, default=str)

            self.logger.info(f"JSON report exported to {filepath}")

        except OSError as e:
            self.logger.error(f"Failed to export JSON report: {str(e)}")
