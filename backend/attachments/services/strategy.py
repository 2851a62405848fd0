"""Category -> processing strategy resolution.

The table is fixed; an explicit tool resource from the caller always wins over
the category bundle, an inferred one (from upload intent) is applied without
marking the result as a user override.
"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Optional

from attachments.constants import (
    FileCategory,
    ToolResource,
    UploadStrategy,
    TOOL_RESOURCE_STRATEGY,
)
from attachments.services.classification import classify


@dataclass(frozen=True)
class StrategyBundle:
    primary: UploadStrategy
    background: tuple[UploadStrategy, ...] = ()
    should_embed: bool = False
    tool_resource: Optional[ToolResource] = None


STRATEGY_TABLE: MappingProxyType = MappingProxyType({
    # images go to the model provider directly, no tool resource
    FileCategory.IMAGE: StrategyBundle(UploadStrategy.IMAGE),
    FileCategory.SPREADSHEET: StrategyBundle(
        UploadStrategy.CODE_EXECUTOR, (UploadStrategy.FILE_SEARCH,), True, ToolResource.EXECUTE_CODE,
    ),
    FileCategory.CODE: StrategyBundle(
        UploadStrategy.CODE_EXECUTOR, (UploadStrategy.FILE_SEARCH,), True, ToolResource.EXECUTE_CODE,
    ),
    FileCategory.DOCUMENT: StrategyBundle(
        UploadStrategy.FILE_SEARCH, (), True, ToolResource.FILE_SEARCH,
    ),
    FileCategory.AUDIO: StrategyBundle(
        UploadStrategy.TEXT_CONTEXT, (UploadStrategy.FILE_SEARCH,), True, ToolResource.CONTEXT,
    ),
    FileCategory.VIDEO: StrategyBundle(UploadStrategy.PROVIDER),
    FileCategory.ARCHIVE: StrategyBundle(UploadStrategy.PROVIDER),
    FileCategory.UNKNOWN: StrategyBundle(
        UploadStrategy.FILE_SEARCH, (), True, ToolResource.FILE_SEARCH,
    ),
})


@dataclass
class AttachmentAnalysis:
    category: FileCategory
    primary_strategy: UploadStrategy
    background_strategies: list[UploadStrategy] = field(default_factory=list)
    should_embed: bool = False
    tool_resource: Optional[ToolResource] = None
    user_override: bool = False

    @property
    def strategies(self) -> list[UploadStrategy]:
        """Primary first, then background strategies, without duplicates."""
        ordered = [self.primary_strategy]
        for strategy in self.background_strategies:
            if strategy not in ordered:
                ordered.append(strategy)
        return ordered

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "primary_strategy": self.primary_strategy,
            "background_strategies": list(self.background_strategies),
            "should_embed": self.should_embed,
            "tool_resource": self.tool_resource,
            "user_override": self.user_override,
        }


def _apply_tool_resource(bundle: StrategyBundle, tool_resource: ToolResource) -> tuple:
    primary = TOOL_RESOURCE_STRATEGY[tool_resource]
    background = tuple(s for s in bundle.background if s != primary)
    if primary == UploadStrategy.FILE_SEARCH:
        should_embed = True
    elif primary == UploadStrategy.CODE_EXECUTOR:
        should_embed = UploadStrategy.FILE_SEARCH in background
    else:
        should_embed = bundle.should_embed
    return primary, background, should_embed


def resolve_strategy(
    category: FileCategory,
    tool_resource: Optional[ToolResource] = None,
    inferred_tool_resource: Optional[ToolResource] = None,
) -> AttachmentAnalysis:
    """Pick primary/background strategies for a category.

    ``tool_resource`` is the caller's explicit choice; ``inferred_tool_resource``
    comes from upload-intent analysis and is only used when no explicit choice
    was made.
    """
    bundle = STRATEGY_TABLE[category]

    if tool_resource is not None:
        primary, background, should_embed = _apply_tool_resource(bundle, tool_resource)
        return AttachmentAnalysis(
            category=category,
            primary_strategy=primary,
            background_strategies=list(background),
            should_embed=should_embed,
            tool_resource=tool_resource,
            user_override=True,
        )

    if inferred_tool_resource is not None:
        primary, background, should_embed = _apply_tool_resource(bundle, inferred_tool_resource)
        return AttachmentAnalysis(
            category=category,
            primary_strategy=primary,
            background_strategies=list(background),
            should_embed=should_embed,
            tool_resource=inferred_tool_resource,
        )

    return AttachmentAnalysis(
        category=category,
        primary_strategy=bundle.primary,
        background_strategies=list(bundle.background),
        should_embed=bundle.should_embed,
        tool_resource=bundle.tool_resource,
    )


def analyze_attachment(
    mimetype: Optional[str],
    filename: Optional[str],
    tool_resource: Optional[ToolResource] = None,
    inferred_tool_resource: Optional[ToolResource] = None,
) -> AttachmentAnalysis:
    """Classify a file and resolve its strategies in one step."""
    return resolve_strategy(classify(mimetype, filename), tool_resource, inferred_tool_resource)
