"""
This collects analysis results and writes summaries and report files (.txt or .json).
"""

import json
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Dict, List

from diagnostics import format_finding, format_location
from models import FileResult, Finding


class Reporter:
    """Collects findings and generates reports."""

    def __init__(self):
        # file name -> findings, in the order files were added
        self.findings: Dict[str, List[Finding]] = {}
        self.failed: Dict[str, str] = {}

    def add_result(self, file_name: str, result: FileResult):
        """Add the outcome of one file to the report."""
        if result.read_error is not None:
            self.failed[file_name] = result.read_error
        elif result.parse_errors:
            self.failed[file_name] = result.parse_errors[0].message
        else:
            self.findings[file_name] = list(result.findings)

    @property
    def all_findings(self) -> List[Finding]:
        """Get flat list of all findings."""
        result = []
        for file_findings in self.findings.values():
            result.extend(file_findings)
        return result

    def total_findings(self) -> int:
        return sum(len(findings) for findings in self.findings.values())

    def files_with_issues(self) -> int:
        return sum(1 for findings in self.findings.values() if findings)

    def count_closures(self) -> int:
        """Distinct closures that can't be cached."""
        closures = set()
        for file_name, file_findings in self.findings.items():
            for f in file_findings:
                closures.add((file_name, f.closure_location))
        return len(closures)

    def get_top_variables(self, limit: int = 10) -> List[tuple]:
        """Most frequently captured variable names."""
        counts = defaultdict(int)
        for f in self.all_findings:
            counts[f.variable] += 1
        return sorted(counts.items(), key=lambda x: (-x[1], x[0]))[:limit]

    def print_summary(self):
        """Print a summary to stdout."""
        print("\n" + "=" * 60)
        print("ANALYSIS SUMMARY")
        print("=" * 60)

        print(f"\n  Files analyzed:          {len(self.findings):5d}")
        print(f"  Files failed:            {len(self.failed):5d}")
        print(f"  Files with issues:       {self.files_with_issues():5d}")
        print(f"  Uncacheable closures:    {self.count_closures():5d}")
        print(f"  {'-' * 30}")
        print(f"  TOTAL upvalue captures:  {self.total_findings():5d}")

        top_variables = self.get_top_variables()
        if top_variables:
            print("\nMost captured upvalues:")
            for name, count in top_variables:
                print(f"  [{count:4d}] {name}")

        file_counts = {name: len(f) for name, f in self.findings.items() if f}
        if file_counts:
            print("\nFiles with most issues:")
            for name, count in sorted(file_counts.items(), key=lambda x: -x[1])[:10]:
                print(f"  [{count:4d}] {name}")

    def save(self, path: Path):
        """Save report to file (json, anything else is plain text)."""
        if path.suffix.lower() == '.json':
            self._save_json(path)
        else:
            self._save_txt(path)

    def _finding_to_dict(self, file_name: str, f: Finding) -> dict:
        return {
            'line': f.location.line + 1,
            'column': f.location.column + 1,
            'variable': f.variable,
            'declared_at': format_location(file_name, f.declared_at),
            'closure': f.closure_name,
            'closure_at': format_location(file_name, f.closure_location),
            'message': format_finding(file_name, f),
        }

    def _save_json(self, path: Path):
        """Save as JSON."""
        data = {
            'generated': datetime.now().isoformat(),
            'summary': {
                'files': len(self.findings),
                'failed': len(self.failed),
                'closures': self.count_closures(),
                'total': self.total_findings(),
            },
            'failed': dict(self.failed),
            'findings': {
                file_name: [self._finding_to_dict(file_name, f) for f in findings]
                for file_name, findings in self.findings.items()
            },
        }
        path.write_text(json.dumps(data, indent=2), encoding='utf-8')

    def _save_txt(self, path: Path):
        """Save as plain text."""
        lines = []
        lines.append("Uncached Closure Report")
        lines.append(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        lines.append("=" * 60)
        lines.append("")

        lines.append("SUMMARY")
        lines.append("-" * 40)
        lines.append(f"Files analyzed:       {len(self.findings)}")
        lines.append(f"Files failed:         {len(self.failed)}")
        lines.append(f"Uncacheable closures: {self.count_closures()}")
        lines.append(f"TOTAL: {self.total_findings()}")
        lines.append("")

        lines.append("DETAILED FINDINGS")
        lines.append("=" * 60)

        for file_name, findings in self.findings.items():
            if not findings:
                continue
            lines.append("")
            lines.append(f"{file_name}:")
            for f in findings:
                lines.append(f"  L{f.location.line + 1}: {f.variable}")
                lines.append(f"         {format_finding(file_name, f)}")

        if self.failed:
            lines.append("")
            lines.append("FAILED")
            lines.append("-" * 40)
            for file_name, reason in self.failed.items():
                lines.append(f"  {file_name}: {reason}")

        path.write_text('\n'.join(lines) + '\n', encoding='utf-8')
