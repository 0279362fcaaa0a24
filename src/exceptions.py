"""Custom exception hierarchy for Daily Repo."""


class DailyRepoError(Exception):
    """Base exception for all Daily Repo errors."""


class ConfigurationError(DailyRepoError):
    """Raised when required setup (credentials, sources) is missing."""


class EmailFetchError(DailyRepoError):
    """Raised when fetching emails from Gmail fails."""


class ContentParseError(DailyRepoError):
    """Raised when parsing email content fails."""


class ArticleExtractError(DailyRepoError):
    """Raised when an article page cannot be fetched or extracted."""


class RepositoryError(DailyRepoError):
    """Raised when a repository read or write fails."""


class DuplicateItemError(RepositoryError):
    """Raised when an insert violates a repository uniqueness constraint."""


class PersonalityStateError(DailyRepoError):
    """Raised when personality state cannot be loaded or saved."""
