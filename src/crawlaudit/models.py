"""Data models for crawl results, accessibility reports and progress frames."""

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from crawlaudit.errors import ErrorKind


@dataclass
class NodeResult:
    """One element affected by an accessibility rule."""

    html: str = ""
    target: list[str] = field(default_factory=list)
    failure_summary: str = ""
    screenshot: Optional[str] = None  # Web path of the highlighted element image

    @property
    def selector(self) -> str:
        """CSS selector path for the element."""
        return " > ".join(self.target)

    @classmethod
    def from_axe(cls, node: dict) -> "NodeResult":
        """Build from an axe-core node result."""
        target = node.get("target") or []
        return cls(
            html=node.get("html") or "",
            # Elements inside iframes/shadow roots come back as nested lists
            target=[t if isinstance(t, str) else " ".join(t) for t in target],
            failure_summary=node.get("failureSummary") or "",
        )

    def to_dict(self) -> dict:
        data = {
            "html": self.html,
            "target": list(self.target),
            "failureSummary": self.failure_summary,
        }
        if self.screenshot:
            data["screenshot"] = self.screenshot
        return data


@dataclass
class RuleOutcome:
    """Result of one accessibility rule in one category."""

    id: str
    impact: Optional[str] = None
    description: str = ""
    help: str = ""
    help_url: str = ""
    tags: list[str] = field(default_factory=list)
    nodes: list[NodeResult] = field(default_factory=list)

    @classmethod
    def from_axe(cls, result: dict, include_nodes: bool = False) -> "RuleOutcome":
        """Build from an axe-core rule result.

        Args:
            result: One entry of axe's violations/passes/incomplete/inapplicable
            include_nodes: Keep the affected-element list
        """
        return cls(
            id=result.get("id", ""),
            impact=result.get("impact"),
            description=result.get("description") or "",
            help=result.get("help") or "",
            help_url=result.get("helpUrl") or "",
            tags=list(result.get("tags") or []),
            nodes=[NodeResult.from_axe(n) for n in result.get("nodes") or []] if include_nodes else [],
        )

    def to_dict(self, include_nodes: bool = False) -> dict:
        data = {
            "id": self.id,
            "impact": self.impact,
            "description": self.description,
            "help": self.help,
            "helpUrl": self.help_url,
            "tags": list(self.tags),
        }
        if include_nodes:
            data["nodes"] = [node.to_dict() for node in self.nodes]
        return data


@dataclass
class AccessibilityReport:
    """Categorized accessibility findings for one page."""

    violations: list[RuleOutcome] = field(default_factory=list)
    passes: list[RuleOutcome] = field(default_factory=list)
    incomplete: list[RuleOutcome] = field(default_factory=list)
    non_applicable: list[RuleOutcome] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def failed(cls, message: str) -> "AccessibilityReport":
        """Empty report carrying the reason the audit could not run."""
        return cls(error=message)

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        data = {
            "violations": [v.to_dict(include_nodes=True) for v in self.violations],
            "passes": [p.to_dict() for p in self.passes],
            "incomplete": [i.to_dict() for i in self.incomplete],
            "nonApplicable": [n.to_dict() for n in self.non_applicable],
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class CrawlResult:
    """Result of one attempted URL."""

    url: str
    screenshot: Optional[str] = None  # Web path, e.g. /screenshots/<name>.png
    links: list[str] = field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    accessibility: Optional[AccessibilityReport] = None

    @classmethod
    def failure(cls, url: str, kind: ErrorKind, message: str) -> "CrawlResult":
        """Result for a page that produced no usable content."""
        return cls(url=url, error=message, error_kind=kind)

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"url": self.url, "links": list(self.links)}
        if self.screenshot:
            data["screenshot"] = self.screenshot
        if self.error:
            data["error"] = self.error
        if self.accessibility is not None:
            data["accessibilityResults"] = self.accessibility.to_dict()
        return data


# =============================================================================
# Navigation / audit outcomes
# =============================================================================

@dataclass
class NavigationSuccess:
    """The page loaded and is usable."""
    status: Optional[int] = None
    final_url: Optional[str] = None


@dataclass
class NavigationBlocked:
    """The site refused the crawler (policy)."""
    kind: ErrorKind
    message: str


@dataclass
class NavigationHttpError:
    """The main document returned a status without usable content."""
    status: int
    kind: ErrorKind
    message: str


@dataclass
class NavigationNetworkError:
    """The renderer failed to navigate."""
    kind: ErrorKind
    message: str


NavigationOutcome = Union[
    NavigationSuccess, NavigationBlocked, NavigationHttpError, NavigationNetworkError
]


@dataclass
class AuditCompleted:
    report: AccessibilityReport


@dataclass
class AuditFailed:
    message: str


AuditOutcome = Union[AuditCompleted, AuditFailed]


# =============================================================================
# Progress frames
# =============================================================================

@dataclass
class ProgressFrame:
    """One unit of the newline-delimited JSON stream.

    Non-terminal frames carry only the results of the latest wave; the
    terminal frame carries every result of the run.
    """

    results: list[CrawlResult]
    used_sitemap: Optional[bool]
    is_complete: bool
    checked_accessibility: bool = False
    current: int = 0
    total: int = 0

    def to_dict(self) -> dict:
        serialized = [r.to_dict() for r in self.results]
        if self.is_complete:
            return {
                "results": serialized,
                "usedSitemap": self.used_sitemap,
                "isComplete": True,
                "checkedAccessibility": self.checked_accessibility,
            }
        return {
            "newResults": serialized,
            "usedSitemap": self.used_sitemap,
            "isComplete": False,
            "progress": {"current": self.current, "total": self.total},
            "checkedAccessibility": self.checked_accessibility,
        }


def error_frame(message: str) -> dict:
    """Frame reporting a request-level failure."""
    return {"error": message}
