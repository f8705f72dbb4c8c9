"""Classify tasks into work domains and decide which domains may run together.

Classification is a cascade where the first match wins:

1. a bracketed tag at the start of the title, e.g. ``[Backend]``  (1.0)
2. issue labels                                                   (0.9)
3. characteristic file paths in the title or body                 (0.7)
4. broad keyword matching, most specific domain first             (0.5)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from issuefleet.tasks.model import Domain, Task

_TITLE_TAG_RE = re.compile(r"^\[([^\]]+)\]")

TITLE_TAGS: tuple[tuple[Domain, tuple[str, ...]], ...] = (
    (Domain.BACKEND, ("backend", "api", "server")),
    (Domain.FRONTEND, ("frontend", "ui", "client", "component", "ux")),
    (Domain.DATABASE, ("database", "db", "schema", "migration")),
    (Domain.TESTING, ("test", "testing", "e2e", "qa")),
    (Domain.DOCUMENTATION, ("doc", "docs", "documentation")),
    (Domain.INFRASTRUCTURE, ("infra", "ci", "deploy", "docker", "devops")),
    (Domain.SECURITY, ("security", "vuln", "cve")),
)

LABEL_PATTERNS: tuple[tuple[Domain, re.Pattern[str]], ...] = (
    (Domain.BACKEND, re.compile(r"backend|api|server")),
    (Domain.FRONTEND, re.compile(r"frontend|ui|ux|component")),
    (Domain.DATABASE, re.compile(r"database|db|schema|migration")),
    (Domain.TESTING, re.compile(r"test|testing|e2e|qa")),
    (Domain.DOCUMENTATION, re.compile(r"documentation|docs")),
    (Domain.INFRASTRUCTURE, re.compile(r"infra|ci|deploy|docker|devops")),
    (Domain.SECURITY, re.compile(r"security|vuln|cve")),
)

PATH_PATTERNS: tuple[tuple[Domain, re.Pattern[str]], ...] = (
    (Domain.BACKEND, re.compile(r"src/(api|server|backend|routers?|services?|middleware|lib/(api|auth|trpc))")),
    (Domain.FRONTEND, re.compile(r"src/(components?|pages?|app/\(|ui/|hooks?/)")),
    (Domain.DATABASE, re.compile(r"(src/db/|drizzle/|\.schema\.ts|drizzle\.config)")),
    (Domain.TESTING, re.compile(r"(tests?/|\.test\.|\.spec\.|__tests__|playwright)")),
    (Domain.INFRASTRUCTURE, re.compile(r"(\.github/|docker|caddyfile)")),
)

# Ordered most to least specific so a generic word in a specific context
# does not win.
KEYWORD_PATTERNS: tuple[tuple[Domain, re.Pattern[str]], ...] = (
    (
        Domain.SECURITY,
        re.compile(
            r"vulnerabilit|cve-[0-9]|xss|csrf|sql.injection|sanitiz(e|ation)|prototype.pollution|owasp"
            r"|content.security.policy|hsts|security.header|security.fix|security.patch|security.audit"
            r"|secret.leak|credential.leak|privilege.escalat|access.control|brute.force|password.hash"
        ),
    ),
    (
        Domain.DATABASE,
        re.compile(
            r"drizzle|neon.postgres|database.migration|schema.change|add.column|drop.column|create.table"
            r"|alter.table|foreign.key|db.constraint|seed.data|db.connection|db.index"
        ),
    ),
    (
        Domain.DOCUMENTATION,
        re.compile(
            r"readme|documentation|changelog|contributing|api.doc|swagger|openapi.spec|jsdoc|typedoc"
            r"|storybook|docstring|sphinx|mkdocs"
        ),
    ),
    (
        Domain.TESTING,
        re.compile(
            r"playwright|jest|vitest|pytest|test.coverage|test.fixture|e2e.test|integration.test|unit.test"
            r"|snapshot.test|regression.test|flaky.test|test.suite|test.helper|test.util"
        ),
    ),
    (
        Domain.INFRASTRUCTURE,
        re.compile(
            r"docker|container|github.action|deploy|caddy|nginx|ssl.cert|dns|cloudflare|aws|lightsail"
            r"|ci.cd|pipeline|health.check|monitoring|sentry|build.fail|bundle.size|turbopack|dockerfile"
            r"|env.var|environment.variable|github.workflow|docker.compose"
        ),
    ),
    (
        Domain.BACKEND,
        re.compile(
            r"trpc|router|endpoint|mutation|middleware|webhook|cron.job|auth|session|jwt|oauth|cors"
            r"|rate.limit|cache|redis|queue|worker|email.send|notification|server.action|server.component"
            r"|api.route|api.handler|request.handler|upload|download"
        ),
    ),
    (
        Domain.FRONTEND,
        re.compile(
            r"component|usestate|useeffect|usecallback|usememo|useref|usecontext|jsx|tsx|react|button"
            r"|modal|dialog|form.input|form.valid|data.table|chart|layout|sidebar|navbar|tooltip|dropdown"
            r"|menu|panel|card|skeleton|loading|spinner|toast|alert|badge|icon|theme|dark.mode|responsive"
            r"|css|tailwind|classname|shadcn|radix|dashboard|onboarding|wizard|stepper|animation"
            r"|transition|popover|combobox|checkbox|radio|toggle|switch|accordion|breadcrumb|pagination"
            r"|avatar|progress.bar|slider|tab.component|landing.page"
        ),
    ),
)


@dataclass
class ClassificationResult:
    domain: Domain
    confidence: float
    reasons: list[str] = field(default_factory=list)


def classify_task(title: str, body: str = "", labels: list[str] | tuple[str, ...] = ()) -> ClassificationResult:
    """Classify a work item by its title, body and labels."""
    m = _TITLE_TAG_RE.match(title)
    if m:
        tag = m.group(1).strip().lower()
        for domain, tags in TITLE_TAGS:
            if tag in tags:
                return ClassificationResult(domain, 1.0, [f"Title tag: [{m.group(1)}]"])

    for label in labels:
        lower = label.lower()
        for domain, pattern in LABEL_PATTERNS:
            if pattern.search(lower):
                return ClassificationResult(domain, 0.9, [f"Label: {', '.join(labels)}"])

    combined = f"{title} {body}".lower()

    for domain, pattern in PATH_PATTERNS:
        if pattern.search(combined):
            return ClassificationResult(domain, 0.7, ["File path patterns in body"])

    for domain, pattern in KEYWORD_PATTERNS:
        if pattern.search(combined):
            return ClassificationResult(domain, 0.5, ["Keyword matching"])

    return ClassificationResult(Domain.UNKNOWN, 0.0, ["No domain indicators found"])


def classify(task: Task) -> ClassificationResult:
    return classify_task(task.title, task.body, task.labels)


def domains_compatible(a: Domain, b: Domain) -> bool:
    """Return ``True`` when tasks in domains *a* and *b* may run concurrently.

    Unknown is incompatible with everything, a domain is incompatible with
    itself, and database is incompatible with every domain.
    """
    if a == Domain.UNKNOWN or b == Domain.UNKNOWN:
        return False
    if a == b:
        return False
    if a == Domain.DATABASE or b == Domain.DATABASE:
        return False
    return True


def is_valid_domain(name: str) -> bool:
    return name in {d.value for d in Domain}
