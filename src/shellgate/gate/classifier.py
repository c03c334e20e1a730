"""Risk classifier: pattern catalog + request context -> Classification.

Classification is pure and deterministic. It never executes anything and
its cost is bounded by the command length and the catalog size.
"""

from shellgate.gate.catalog import PatternCatalog
from shellgate.gate.models import Classification, ExecutionTarget
from shellgate.gate.tokenizer import CommandTokenizer


class RiskClassifier:
    """Scores a command against a pattern catalog.

    Each segment is matched independently; when rules from several
    categories match, the highest severity wins.
    """

    def __init__(self, catalog: PatternCatalog | None = None):
        self.catalog = catalog if catalog is not None else PatternCatalog()
        self._tokenizer = CommandTokenizer()

    def classify(
        self,
        command: str,
        target: ExecutionTarget | None = None,
        uses_root: bool = False,
        uses_sudo: bool = False,
    ) -> Classification:
        """Classify a command for a target.

        Args:
            command: The command text.
            target: Execution target; container targets activate
                container-only rules.
            uses_root: Whether the target runs commands as root.
            uses_sudo: Whether the command invokes a privilege wrapper.

        Returns:
            Classification with the matched rules and highest severity.
        """
        tokenized = self._tokenizer.tokenize(command)
        matched = self.catalog.match_tokens(tokenized, target or ExecutionTarget.host())
        highest = max((rule.severity for rule in matched), default=None)
        return Classification(
            matched_rules=matched,
            uses_root=uses_root,
            uses_sudo=uses_sudo,
            highest_severity=highest,
        )


def classify(
    command: str,
    target: ExecutionTarget | None = None,
    uses_root: bool = False,
    uses_sudo: bool = False,
    catalog: PatternCatalog | None = None,
) -> Classification:
    """Classify a command with a one-off classifier."""
    return RiskClassifier(catalog).classify(command, target, uses_root, uses_sudo)
