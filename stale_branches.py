#!/usr/bin/env python3
"""
Stale Branch Scanner

This script walks the branches of a GitHub repository (or GitLab project),
works out how many days ago each branch last received a commit, and reports
the branches older than the configured threshold as a JSON list under the
``stale-branches`` output key, ready for downstream automation.

The scan keeps an eye on the API quota of the calling account: once more
than 95% of it is used, the scan stops, marks the run as failed and still
emits whatever it collected so far.

Supported platforms:
- GitHub (via PyGithub)
- GitLab (via python-gitlab)
"""

import argparse
import dataclasses
import json
import logging
import os
import sys
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import List, Mapping, Optional

import gitlab
import requests
import yaml
from github import Github, GithubException
from jinja2 import Template


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


SUMMARY_TEMPLATE = """\
## Stale Branches

{% if branches -%}
Found {{ branches | length }} branch(es) with no commits for more than {{ days_before_stale }} days.

| Branch | Last Commit Age (days) | Last Commit Author |
| ------ | ---------------------: | ------------------ |
{% for branch in branches -%}
| `{{ branch.name | replace('|', '\\\\|') }}` | {{ branch.last_commit_age }} | {{ branch.last_commit_author }} |
{% endfor -%}
{% else -%}
No branches have gone more than {{ days_before_stale }} days without a commit.
{% endif -%}
{% if rate_limited %}
> **Note:** the scan stopped early to avoid a rate limit violation; this list is incomplete.
{% endif %}
"""

# Name of the output key the stale branch list is published under
OUTPUT_KEY = 'stale-branches'

# Placeholder author used until a commit author has been looked up
UNKNOWN_AUTHOR = 'Unknown'

# The scan stops once more than this share of the API quota is used
RATE_LIMIT_MAX_USED_PERCENT = 95
RATE_LIMIT_FAILURE_MESSAGE = 'Exiting to avoid rate limit violation.'

DEFAULT_PLATFORM = 'github'
SUPPORTED_PLATFORMS = ('github', 'gitlab')

# Action inputs (as named in action.yml) mapped to configuration keys
ACTION_INPUTS = {
    'days-before-stale': 'days_before_stale',
    'days-before-delete': 'days_before_delete',
    'tag-committer': 'tag_last_committer',
}

# Errors the hosting libraries raise for API and transport failures
GITHUB_ERRORS = (GithubException, requests.exceptions.RequestException)
GITLAB_ERRORS = (gitlab.exceptions.GitlabError, requests.exceptions.RequestException)

TRUE_VALUES = ('true', 'True', 'TRUE')
FALSE_VALUES = ('false', 'False', 'FALSE')


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""


class GatewayError(Exception):
    """Raised when the remote repository service cannot answer a request."""


# =============================================================================
# Data Model
# =============================================================================


@dataclass(frozen=True)
class BranchRef:
    """A branch and the SHA of its tip commit at enumeration time."""
    name: str
    commit_sha: str


@dataclass(frozen=True)
class RateLimitStatus:
    """Snapshot of the API quota; ``used`` is a percentage from 0 to 100."""
    used: int
    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset: Optional[datetime] = None


@dataclass(frozen=True)
class StaleBranchRecord:
    name: str
    last_commit_age: int
    last_commit_author: str

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'lastCommitAge': self.last_commit_age,
            'lastCommitAuthor': self.last_commit_author,
        }


@dataclass(frozen=True)
class Config:
    """
    Validated settings for one scan.

    ``days_before_stale`` may be None when the input was never supplied;
    ``run`` refuses to start in that case.
    """
    days_before_stale: Optional[int]
    days_before_delete: Optional[int] = None
    tag_last_committer: bool = False
    platform: str = DEFAULT_PLATFORM
    github: Mapping = field(default_factory=dict)
    gitlab: Mapping = field(default_factory=dict)
    output_path: Optional[str] = None

    def __post_init__(self):
        # Platform sections are read-only like the rest of the config
        object.__setattr__(self, 'github', MappingProxyType(dict(self.github)))
        object.__setattr__(self, 'gitlab', MappingProxyType(dict(self.gitlab)))


@dataclass
class AssessmentState:
    """
    Accumulator owned by a single scan.

    ``last_commit_author`` is only refreshed when author tagging is enabled;
    otherwise it keeps whatever value it last held.
    """
    stale_branches: List[StaleBranchRecord] = field(default_factory=list)
    last_commit_author: str = UNKNOWN_AUTHOR

    def has_branch(self, name: str) -> bool:
        return any(record.name == name for record in self.stale_branches)


@dataclass(frozen=True)
class AssessmentResult:
    stale_branches: List[StaleBranchRecord]
    rate_limited: bool = False


class LoopSignal(Enum):
    """What the scan should do after assessing a branch."""
    CONTINUE = 'continue'
    STOP = 'stop'


class RunStatus(Enum):
    COMPLETED = 'completed'
    RATE_LIMITED = 'rate_limited'
    FAILED = 'failed'


@dataclass(frozen=True)
class RunOutcome:
    status: RunStatus
    stale_branches: List[StaleBranchRecord]
    message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.COMPLETED


# =============================================================================
# Configuration
# =============================================================================


def get_input(name: str, environ: Mapping[str, str]) -> Optional[str]:
    """
    Read an action input from the environment.

    The runner exposes inputs as ``INPUT_<NAME>`` with the name upper-cased;
    the underscore spelling (``INPUT_DAYS_BEFORE_STALE``) is accepted as well
    because not every shell can export names containing dashes.

    Args:
        name: Input name as declared in action.yml (e.g. 'days-before-stale')
        environ: Environment mapping to read from

    Returns:
        The stripped value, or None if the input is unset or blank
    """
    upper = name.upper()
    for key in (f"INPUT_{upper}", f"INPUT_{upper.replace('-', '_')}"):
        value = environ.get(key)
        if value is not None and value.strip():
            return value.strip()
    return None


def parse_days(value, key: str) -> Optional[int]:
    """
    Convert a threshold to a non-negative number of days.

    Args:
        value: Raw value from YAML or the environment (int, str or None)
        key: Configuration key, used in error messages

    Returns:
        Number of days, or None if the value is unset

    Raises:
        ConfigurationError: If the value is not a non-negative integer
    """
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ConfigurationError(f"'{key}' must be a whole number of days, got {value!r}")
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            raise ConfigurationError(
                f"'{key}' must be a whole number of days, got {value!r}"
            ) from None
    if not isinstance(value, int):
        raise ConfigurationError(f"'{key}' must be a whole number of days, got {value!r}")
    if value < 0:
        raise ConfigurationError(f"'{key}' must not be negative, got {value}")
    return value


def parse_flag(value, key: str, default: bool = False) -> bool:
    """Convert a YAML or environment value to a boolean."""
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        if value.strip() in TRUE_VALUES:
            return True
        if value.strip() in FALSE_VALUES:
            return False
    raise ConfigurationError(f"'{key}' must be 'true' or 'false', got {value!r}")


def apply_env_overrides(raw: dict, environ: Mapping[str, str]) -> dict:
    """
    Layer action inputs and runner variables over a file configuration.

    Action inputs always win over the file. ``GITHUB_TOKEN``,
    ``GITHUB_REPOSITORY`` and ``GITHUB_API_URL`` only fill in settings the
    file left out.

    Args:
        raw: Configuration dictionary loaded from YAML (may be empty)
        environ: Environment mapping to read from

    Returns:
        A new configuration dictionary
    """
    merged = dict(raw)

    for input_name, key in ACTION_INPUTS.items():
        value = get_input(input_name, environ)
        if value is not None:
            merged[key] = value

    github = dict(merged.get('github') or {})
    token = get_input('repo-token', environ)
    if token:
        github['token'] = token
    elif not github.get('token') and environ.get('GITHUB_TOKEN'):
        github['token'] = environ['GITHUB_TOKEN']
    if not github.get('repository') and environ.get('GITHUB_REPOSITORY'):
        github['repository'] = environ['GITHUB_REPOSITORY']
    if not github.get('api_url') and environ.get('GITHUB_API_URL'):
        github['api_url'] = environ['GITHUB_API_URL']
    merged['github'] = github

    return merged


def validate_config(config: dict) -> None:
    """
    Validate the shape of a configuration dictionary.

    Only checks that the selected platform section is complete and that
    values have the right types; it does not require ``days_before_stale``,
    which ``run`` checks before doing any work.

    Args:
        config: Configuration dictionary to validate

    Raises:
        ConfigurationError: If a section or key is missing or malformed
    """
    if not isinstance(config, dict):
        raise ConfigurationError("Configuration must be a mapping")

    platform = config.get('platform', DEFAULT_PLATFORM)

    if platform not in SUPPORTED_PLATFORMS:
        raise ConfigurationError(
            f"Unsupported platform: '{platform}'. Must be 'github' or 'gitlab'."
        )

    if platform == 'github':
        required_keys = ['token', 'repository']
    else:
        required_keys = ['url', 'private_token', 'project']

    section = config.get(platform)
    if not isinstance(section, dict):
        raise ConfigurationError(f"Missing '{platform}' section in configuration")
    for key in required_keys:
        if not section.get(key):
            raise ConfigurationError(f"Missing required {platform} config key: '{key}'")

    parse_days(config.get('days_before_stale'), 'days_before_stale')
    parse_days(config.get('days_before_delete'), 'days_before_delete')
    parse_flag(config.get('tag_last_committer'), 'tag_last_committer')


def build_config(raw: dict) -> Config:
    """Validate a configuration dictionary and convert it to a Config."""
    validate_config(raw)
    return Config(
        days_before_stale=parse_days(raw.get('days_before_stale'), 'days_before_stale'),
        days_before_delete=parse_days(raw.get('days_before_delete'), 'days_before_delete'),
        tag_last_committer=parse_flag(raw.get('tag_last_committer'), 'tag_last_committer'),
        platform=raw.get('platform', DEFAULT_PLATFORM),
        github=dict(raw.get('github') or {}),
        gitlab=dict(raw.get('gitlab') or {}),
        output_path=raw.get('output_path'),
    )


def load_config_file(config_path: str) -> dict:
    """Load a configuration dictionary from a YAML file."""
    with open(config_path, 'r', encoding='utf-8') as f:
        raw = yaml.safe_load(f)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Configuration file {config_path} must contain a mapping")
    return raw


def load_config(
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None
) -> Config:
    """
    Build the scan configuration from an optional YAML file and the environment.

    Args:
        config_path: Path to a YAML configuration file, or None
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated Config

    Raises:
        FileNotFoundError: If config_path does not exist
        yaml.YAMLError: If the file is not valid YAML
        ConfigurationError: If the merged configuration is invalid
    """
    if environ is None:
        environ = os.environ
    raw = load_config_file(config_path) if config_path else {}
    return build_config(apply_env_overrides(raw, environ))


# =============================================================================
# Repository Gateways
# =============================================================================


def parse_commit_date(date_str: str) -> datetime:
    """
    Parse a commit date string into a datetime object.

    Handles various ISO 8601 formats that GitLab might return.

    Args:
        date_str: Date string in ISO 8601 format

    Returns:
        datetime object with timezone info

    Raises:
        ValueError: If the date cannot be parsed
    """
    if date_str.endswith('Z'):
        date_str = date_str[:-1] + '+00:00'

    try:
        return datetime.fromisoformat(date_str)
    except ValueError:
        formats = [
            '%Y-%m-%dT%H:%M:%S%z',
            '%Y-%m-%dT%H:%M:%S.%f%z',
            '%Y-%m-%d %H:%M:%S%z',
        ]
        for fmt in formats:
            try:
                return datetime.strptime(date_str, fmt)
            except ValueError:
                continue
        raise ValueError(f"Unable to parse date: {date_str}")


def commit_age_days(commit_date: datetime, now: Optional[datetime] = None) -> int:
    """
    Whole days elapsed since a commit, never negative.

    Naive datetimes are taken to be UTC.
    """
    if commit_date.tzinfo is None:
        commit_date = commit_date.replace(tzinfo=timezone.utc)
    if now is None:
        now = datetime.now(timezone.utc)
    return max((now - commit_date).days, 0)


def quota_used_percent(limit: Optional[int], remaining: Optional[int]) -> int:
    """Share of an API quota already consumed, rounded to a whole percent."""
    if not limit or remaining is None:
        return 0
    used = round((limit - remaining) / limit * 100)
    return min(max(used, 0), 100)


def _github_error_message(e: Exception) -> str:
    data = getattr(e, 'data', None)
    if isinstance(data, dict) and data.get('message'):
        return data['message']
    return str(e)


def create_github_client(config: Config) -> Github:
    """
    Create a GitHub client from the token in the configuration.

    Args:
        config: Configuration with a complete 'github' section

    Returns:
        PyGithub Github client
    """
    token = config.github['token']
    api_url = config.github.get('api_url')
    if api_url:
        return Github(login_or_token=token, base_url=api_url)
    return Github(login_or_token=token)


def create_gitlab_client(config: Config) -> gitlab.Gitlab:
    """
    Create and authenticate a GitLab client.

    Raises:
        ConfigurationError: If GitLab rejects the token
        GatewayError: If GitLab cannot be reached
    """
    gl = gitlab.Gitlab(
        url=config.gitlab['url'],
        private_token=config.gitlab['private_token']
    )
    try:
        gl.auth()
    except gitlab.exceptions.GitlabAuthenticationError as e:
        raise ConfigurationError(f"Failed to authenticate with GitLab: {e}") from e
    except requests.exceptions.RequestException as e:
        raise GatewayError(f"Could not reach GitLab at {config.gitlab['url']}: {e}") from e
    return gl


class GitHubGateway:
    """Branch, commit and quota lookups for one GitHub repository."""

    def __init__(self, gh: Github, repo_name: str):
        self._gh = gh
        self._repo_name = repo_name
        self._repo = None

    @property
    def repo(self):
        if self._repo is None:
            try:
                self._repo = self._gh.get_repo(self._repo_name)
            except GITHUB_ERRORS as e:
                raise GatewayError(
                    f"Could not open repository {self._repo_name}: {_github_error_message(e)}"
                ) from e
        return self._repo

    def list_branches(self) -> List[BranchRef]:
        try:
            return [
                BranchRef(name=branch.name, commit_sha=branch.commit.sha)
                for branch in self.repo.get_branches()
            ]
        except GITHUB_ERRORS as e:
            raise GatewayError(
                f"Could not list branches of {self._repo_name}: {_github_error_message(e)}"
            ) from e

    def get_rate_limit(self) -> RateLimitStatus:
        """
        Fetch the current core API quota.

        Newer PyGithub releases wrap the per-resource limits in a
        ``resources`` attribute; older ones expose ``core`` directly.
        """
        try:
            overview = self._gh.get_rate_limit()
        except GITHUB_ERRORS as e:
            raise GatewayError(
                f"Could not fetch rate limit: {_github_error_message(e)}"
            ) from e
        core = getattr(overview, 'resources', overview).core
        return RateLimitStatus(
            used=quota_used_percent(core.limit, core.remaining),
            limit=core.limit,
            remaining=core.remaining,
            reset=core.reset,
        )

    def _get_commit(self, sha: str):
        try:
            return self.repo.get_commit(sha)
        except GITHUB_ERRORS as e:
            raise GatewayError(
                f"Could not fetch commit {sha}: {_github_error_message(e)}"
            ) from e

    def get_commit_age_days(self, sha: str) -> int:
        commit = self._get_commit(sha)
        return commit_age_days(commit.commit.committer.date)

    def get_commit_author_login(self, sha: str) -> str:
        commit = self._get_commit(sha)
        # None when the commit email is not linked to a GitHub account
        author = commit.author
        if author is None or not author.login:
            raise GatewayError(f"No GitHub user is linked to the author of commit {sha}")
        return author.login


class GitLabGateway:
    """
    Branch, commit and quota lookups for one GitLab project.

    GitLab does not publish the caller's quota usage through its API, so
    the rate limit is always reported as 0% used.
    """

    def __init__(self, gl: gitlab.Gitlab, project_id):
        self._gl = gl
        self._project_id = project_id
        self._project = None

    @property
    def project(self):
        if self._project is None:
            try:
                self._project = self._gl.projects.get(self._project_id)
            except GITLAB_ERRORS as e:
                raise GatewayError(f"Could not open project {self._project_id}: {e}") from e
        return self._project

    def list_branches(self) -> List[BranchRef]:
        try:
            return [
                BranchRef(name=branch.name, commit_sha=branch.commit['id'])
                for branch in self.project.branches.list(all=True)
            ]
        except GITLAB_ERRORS as e:
            raise GatewayError(
                f"Could not list branches of project {self._project_id}: {e}"
            ) from e

    def get_rate_limit(self) -> RateLimitStatus:
        return RateLimitStatus(used=0)

    def _get_commit(self, sha: str):
        try:
            return self.project.commits.get(sha)
        except GITLAB_ERRORS as e:
            raise GatewayError(f"Could not fetch commit {sha}: {e}") from e

    def get_commit_age_days(self, sha: str) -> int:
        commit = self._get_commit(sha)
        try:
            committed = parse_commit_date(commit.committed_date)
        except ValueError as e:
            raise GatewayError(f"Commit {sha} has an unreadable date: {e}") from e
        return commit_age_days(committed)

    def get_commit_author_login(self, sha: str) -> str:
        commit = self._get_commit(sha)
        email = getattr(commit, 'author_email', '')
        if not email:
            raise GatewayError(f"Commit {sha} has no author email")
        try:
            users = self._gl.users.list(search=email, per_page=1)
        except GITLAB_ERRORS as e:
            raise GatewayError(f"Error looking up GitLab user for {email}: {e}") from e
        if not users:
            raise GatewayError(f"No GitLab user found for commit author {email}")
        return users[0].username


def create_gateway(config: Config):
    """Create the repository gateway for the configured platform."""
    if config.platform == 'gitlab':
        return GitLabGateway(create_gitlab_client(config), config.gitlab['project'])
    return GitHubGateway(create_github_client(config), config.github['repository'])


# =============================================================================
# Logging
# =============================================================================


def _escape_command_data(value: str) -> str:
    return value.replace('%', '%25').replace('\r', '%0D').replace('\n', '%0A')


class ActionsLog:
    """
    Log sink for the scan.

    Inside GitHub Actions, groups and failures are written as workflow
    commands so the runner folds each branch's lines and annotates the run.
    Elsewhere the same messages go through the logger as plain lines.
    """

    def __init__(self, log: logging.Logger = logger, workflow_commands: Optional[bool] = None):
        self._logger = log
        if workflow_commands is None:
            workflow_commands = os.environ.get('GITHUB_ACTIONS') == 'true'
        self._workflow_commands = workflow_commands

    def start_group(self, title: str) -> None:
        if self._workflow_commands:
            self._logger.info(f"::group::{_escape_command_data(title)}")
        else:
            self._logger.info(title)

    def end_group(self) -> None:
        if self._workflow_commands:
            self._logger.info("::endgroup::")

    def info(self, message: str) -> None:
        self._logger.info(message)

    def warning(self, message: str) -> None:
        if self._workflow_commands:
            self._logger.warning(f"::warning::{_escape_command_data(message)}")
        else:
            self._logger.warning(message)

    def set_failed(self, message: str) -> None:
        if self._workflow_commands:
            self._logger.error(f"::error::{_escape_command_data(message)}")
        else:
            self._logger.error(message)


def branch_state(
    commit_age: int,
    days_before_stale: int,
    days_before_delete: Optional[int] = None
) -> str:
    """Classify a branch as 'active', 'stale' or 'dead' by commit age."""
    if days_before_delete is not None and commit_age > days_before_delete:
        return 'dead'
    if commit_age > days_before_stale:
        return 'stale'
    return 'active'


def format_branch_group_title(
    branch_name: str,
    commit_age: int,
    days_before_stale: int,
    days_before_delete: Optional[int] = None
) -> str:
    state = branch_state(commit_age, days_before_stale, days_before_delete)
    return f"{branch_name} [{state}]"


def format_last_commit(
    commit_age: int,
    days_before_stale: int,
    days_before_delete: Optional[int] = None
) -> str:
    state = branch_state(commit_age, days_before_stale, days_before_delete)
    message = f"Last Commit: {commit_age} days ago"
    if state == 'dead':
        return f"{message} (past the {days_before_delete} day delete threshold)"
    if state == 'stale':
        return f"{message} (stale after {days_before_stale} days)"
    return message


def format_rate_limit_break(rate_limit: RateLimitStatus) -> str:
    message = (
        f"API rate limit usage is at {rate_limit.used}%, "
        f"above the {RATE_LIMIT_MAX_USED_PERCENT}% ceiling."
    )
    if rate_limit.remaining is not None and rate_limit.limit is not None:
        message += f" {rate_limit.remaining} of {rate_limit.limit} calls remaining."
    if rate_limit.reset is not None:
        message += f" Quota resets at {rate_limit.reset.strftime('%Y-%m-%d %H:%M:%S')}."
    return message


# =============================================================================
# Stale Assessment
# =============================================================================


def assess_branch(
    branch: BranchRef,
    config: Config,
    gateway,
    state: AssessmentState,
    log: ActionsLog
) -> LoopSignal:
    """
    Assess one branch and record it if it is stale.

    The quota is checked before any commit data is fetched. Gateway errors
    are not caught here.

    Args:
        branch: Branch to assess
        config: Scan configuration (days_before_stale must be set)
        gateway: Repository gateway
        state: Accumulator for this scan
        log: Log sink

    Returns:
        LoopSignal.STOP if the quota is nearly exhausted, else LoopSignal.CONTINUE
    """
    rate_limit = gateway.get_rate_limit()
    if rate_limit.used > RATE_LIMIT_MAX_USED_PERCENT:
        log.warning(format_rate_limit_break(rate_limit))
        return LoopSignal.STOP

    commit_age = gateway.get_commit_age_days(branch.commit_sha)

    if config.tag_last_committer:
        state.last_commit_author = gateway.get_commit_author_login(branch.commit_sha)

    log.start_group(format_branch_group_title(
        branch.name, commit_age, config.days_before_stale, config.days_before_delete
    ))
    log.info(format_last_commit(
        commit_age, config.days_before_stale, config.days_before_delete
    ))

    if commit_age > config.days_before_stale and not state.has_branch(branch.name):
        state.stale_branches.append(StaleBranchRecord(
            name=branch.name,
            last_commit_age=commit_age,
            last_commit_author=state.last_commit_author,
        ))

    log.end_group()
    return LoopSignal.CONTINUE


def assess_branches(
    config: Config,
    branches: List[BranchRef],
    gateway,
    log: Optional[ActionsLog] = None
) -> AssessmentResult:
    """
    Assess branches in order until the list ends or the quota runs low.

    Args:
        config: Scan configuration (days_before_stale must be set)
        branches: Branches to assess, in evaluation order
        gateway: Repository gateway
        log: Log sink (defaults to ActionsLog())

    Returns:
        AssessmentResult with the stale branches in evaluation order
    """
    if log is None:
        log = ActionsLog()
    state = AssessmentState()

    for branch in branches:
        if assess_branch(branch, config, gateway, state, log) is LoopSignal.STOP:
            return AssessmentResult(stale_branches=state.stale_branches, rate_limited=True)

    return AssessmentResult(stale_branches=state.stale_branches)


# =============================================================================
# Output
# =============================================================================


def serialize_stale_branches(records: List[StaleBranchRecord]) -> str:
    return json.dumps([record.to_dict() for record in records], separators=(',', ':'))


def set_output(name: str, value: str, output_file: str) -> None:
    """
    Append a step output to the runner's ``$GITHUB_OUTPUT`` file.

    Uses the multi-line form with a random delimiter so the value may hold
    any characters.
    """
    delimiter = f"ghadelimiter_{uuid.uuid4()}"
    with open(output_file, 'a', encoding='utf-8') as f:
        f.write(f"{name}<<{delimiter}\n{value}\n{delimiter}\n")


def generate_summary(
    records: List[StaleBranchRecord],
    days_before_stale: int,
    rate_limited: bool = False
) -> str:
    """Render the Markdown job summary for a scan."""
    template = Template(SUMMARY_TEMPLATE)
    return template.render(
        branches=records,
        days_before_stale=days_before_stale,
        rate_limited=rate_limited,
    )


def emit_result(
    records: List[StaleBranchRecord],
    config: Config,
    rate_limited: bool = False,
    environ: Optional[Mapping[str, str]] = None
) -> None:
    """
    Publish the stale branch list.

    The JSON list goes to ``$GITHUB_OUTPUT`` under the ``stale-branches``
    key when the runner provides that file, and to ``config.output_path``
    when one is configured. With neither, it is printed to stdout. A job
    summary is appended to ``$GITHUB_STEP_SUMMARY`` when available.
    """
    if environ is None:
        environ = os.environ
    payload = serialize_stale_branches(records)

    github_output = environ.get('GITHUB_OUTPUT')
    if github_output:
        set_output(OUTPUT_KEY, payload, github_output)
    if config.output_path:
        with open(config.output_path, 'w', encoding='utf-8') as f:
            f.write(payload + '\n')
    if not github_output and not config.output_path:
        sys.stdout.write(payload + '\n')

    summary_file = environ.get('GITHUB_STEP_SUMMARY')
    if summary_file:
        with open(summary_file, 'a', encoding='utf-8') as f:
            f.write(generate_summary(records, config.days_before_stale, rate_limited))


# =============================================================================
# Run
# =============================================================================


def run(
    config: Config,
    gateway,
    log: Optional[ActionsLog] = None,
    environ: Optional[Mapping[str, str]] = None
) -> RunOutcome:
    """
    Scan the repository and publish the stale branch list.

    A quota stop marks the run as failed but the branches collected before
    it are still published. Any other error, from configuration, the gateway
    or elsewhere, fails the run without publishing anything.

    Args:
        config: Scan configuration
        gateway: Repository gateway
        log: Log sink (defaults to ActionsLog())
        environ: Environment mapping used for runner files (defaults to os.environ)

    Returns:
        RunOutcome describing how the run ended
    """
    if log is None:
        log = ActionsLog()

    try:
        if config.days_before_stale is None:
            raise ConfigurationError('Invalid inputs')
        branches = gateway.list_branches()
        logger.debug(f"Assessing {len(branches)} branch(es)")
        result = assess_branches(config, branches, gateway, log)
    except Exception as e:
        logger.debug("Scan failed", exc_info=True)
        message = f"Action failed. Error: {e}"
        log.set_failed(message)
        return RunOutcome(status=RunStatus.FAILED, stale_branches=[], message=message)

    status = RunStatus.COMPLETED
    message = None
    if result.rate_limited:
        status = RunStatus.RATE_LIMITED
        message = RATE_LIMIT_FAILURE_MESSAGE
        log.set_failed(message)

    emit_result(result.stale_branches, config, result.rate_limited, environ)
    return RunOutcome(status=status, stale_branches=result.stale_branches, message=message)


def main() -> Optional[int]:
    """Main entry point for the script."""
    parser = argparse.ArgumentParser(
        description='Report branches whose last commit is older than a threshold. '
                    'Supports both GitHub and GitLab platforms.'
    )
    parser.add_argument(
        '-c', '--config',
        default=None,
        help='Path to a YAML configuration file (optional; action inputs are '
             'read from INPUT_* environment variables)'
    )
    parser.add_argument(
        '-o', '--output',
        default=None,
        help='Write the stale branch JSON list to this file'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    args = parser.parse_args()

    if os.environ.get('GITHUB_ACTIONS') == 'true':
        # Workflow commands must start the line
        logging.basicConfig(level=logging.INFO, format='%(message)s', stream=sys.stdout, force=True)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    log = ActionsLog()

    try:
        config = load_config(args.config)
        if args.output:
            config = dataclasses.replace(config, output_path=args.output)
        if config.days_before_stale is None:
            raise ConfigurationError('Invalid inputs')
        gateway = create_gateway(config)
    except FileNotFoundError:
        log.set_failed(f"Configuration file not found: {args.config}")
        return 1
    except yaml.YAMLError as e:
        log.set_failed(f"Invalid YAML in configuration file: {e}")
        return 1
    except (ConfigurationError, GatewayError) as e:
        log.set_failed(f"Action failed. Error: {e}")
        return 1

    outcome = run(config, gateway, log)

    if outcome.status is not RunStatus.FAILED:
        logger.info("=" * 50)
        logger.info("Stale Branch Summary")
        logger.info("=" * 50)
        logger.info(f"Stale branches found: {len(outcome.stale_branches)}")
        if outcome.status is RunStatus.RATE_LIMITED:
            logger.info("Scan stopped early to stay within the API rate limit")

    return 0 if outcome.succeeded else 1


if __name__ == '__main__':
    exit(main())
