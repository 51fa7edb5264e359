"""
ralph draft / ralph epics - Non-interactive inspection.

Shows or clears the autosaved wizard draft, and prints a saved epic.
"""

from ralph.db.drafts import EpicDraftRepository
from ralph.db.epics import EpicRepository
from ralph.db.session import StorageError, open_database
from ralph.lib.config import RalphConfig

DESCRIPTION_PREVIEW_CHARS = 200


def cmd_draft_show(args, config: RalphConfig) -> int:
    """Print the saved draft's step and description."""
    db = open_database(config.db_url, disable_wal=config.disable_wal)
    try:
        state = EpicDraftRepository(db).load()
    except StorageError as e:
        print(f"ERROR: {e}")
        return 1
    finally:
        db.dispose()

    if state is None:
        print("No draft saved")
        return 1

    description = state.description.strip()
    if len(description) > DESCRIPTION_PREVIEW_CHARS:
        description = description[:DESCRIPTION_PREVIEW_CHARS] + "..."

    print(f"Draft step: {state.wizard_step.type.value}")
    print(f"Description: {description or '(empty)'}")
    if state.open_questions:
        answered = len(state.question_answers)
        print(f"Open questions: {answered}/{len(state.open_questions)} answered")
    if state.spec_content:
        print(f"Specification: {len(state.spec_content)} chars")
    return 0


def cmd_draft_clear(args, config: RalphConfig) -> int:
    """Delete the saved draft."""
    db = open_database(config.db_url, disable_wal=config.disable_wal)
    try:
        repo = EpicDraftRepository(db)
        if not repo.exists():
            print("No draft saved")
            return 0
        repo.clear()
    except StorageError as e:
        print(f"ERROR: {e}")
        return 1
    finally:
        db.dispose()

    print("Draft cleared")
    return 0


def cmd_epics_show(args, config: RalphConfig) -> int:
    """Print a saved epic."""
    db = open_database(config.db_url, disable_wal=config.disable_wal)
    try:
        epic = EpicRepository(db).find_by_id(args.id)
    except StorageError as e:
        print(f"ERROR: {e}")
        return 1
    finally:
        db.dispose()

    if epic is None:
        print(f"ERROR: Epic {args.id} not found")
        return 1

    status = " (deleted)" if epic.deleted_at else ""
    print(f"# Epic {epic.id}: {epic.title}{status}")
    print(f"Created: {epic.created_at:%Y-%m-%d %H:%M}")
    print()
    print(epic.description)
    return 0
