"""Prompt templates for task agents and the planner."""

from __future__ import annotations

from issuefleet.tasks.model import Task


def build_task_prompt(task: Task) -> str:
    return f"""You are working on a specific task. Focus ONLY on this task:

TASK: #{task.id} - {task.title}

{task.body}

Instructions:
1. Read the relevant files before changing anything.
2. Implement the task completely by creating or editing the necessary code files.
3. Write tests if appropriate and run them.
4. You MUST leave file changes behind. If no code change is possible, create
   ANALYSIS-{task.id}.md at the repository root explaining why.

SCOPE RULES:
- Only modify files required by this task.
- Do NOT refactor, rename or delete code outside the task scope.
- Other agents are working on other tasks in parallel. Do not disrupt their work.
- Do NOT commit; changes are committed for you when you finish.

Focus only on implementing: {task.title}"""


def build_system_prompt(task: Task) -> str:
    return f"""You are a software engineer with full tool access (Read, Edit, Write, Bash).
You MUST use these tools to implement issue #{task.id}.
Do not just describe what you would do; make the changes.
If tools are not working, respond with 'TOOL_ACCESS_FAILED' and stop."""


def build_planner_prompt(directive: str, repo: str) -> str:
    return f"""You are a technical project planner. Break the directive below into
actionable GitHub issues.

DIRECTIVE:
{directive}

REPOSITORY: {repo}

Rules:
1. Produce 3-10 specific, independently reviewable tasks.
2. Give each a descriptive title (max 80 chars) starting with a domain tag
   such as [Backend], [Frontend], [Database], [Testing], [Docs], [Infra] or [Security].
3. Describe what to implement in the body, naming the files to touch.
4. Record dependencies as 1-based positions in this list.
5. Rate complexity as simple (<1h), medium (1-4h) or complex (>4h).

Respond with ONLY a JSON array in this format:
```json
[
  {{
    "title": "[Backend] Short descriptive title",
    "body": "Detailed description...",
    "labels": ["feature", "backend"],
    "metadata": {{"complexity": "medium", "depends_on": [1]}}
  }}
]
```"""


def build_pr_body(task: Task) -> str:
    lines = [
        f"Closes #{task.id}",
        "",
        f"**Domain:** {task.domain.value}",
    ]
    if task.cost_usd is not None:
        lines.append(f"**Agent cost:** ${task.cost_usd:.2f}")
    if task.files_changed:
        lines.append(
            f"**Changes:** {task.files_changed} files (+{task.lines_added}/-{task.lines_removed})"
        )
    lines += ["", "Automated PR created by issuefleet."]
    return "\n".join(lines)
