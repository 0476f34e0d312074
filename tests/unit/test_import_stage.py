from __future__ import annotations

import pytest

from event_import.models.import_stage import ImportStage, InvalidStageTransition


def test_linear_progression():
    stage = ImportStage.IDLE
    for target in list(ImportStage)[1:]:
        stage = stage.advance(target)
    assert stage is ImportStage.DONE
    assert stage.next_allowed() == set()


def test_dry_run_shortcut():
    assert ImportStage.DEDUPLICATED.advance(ImportStage.DONE) is ImportStage.DONE


@pytest.mark.parametrize(
    "current,target",
    [
        (ImportStage.IDLE, ImportStage.RESOLVED),
        (ImportStage.VALIDATED, ImportStage.PARSED),
        (ImportStage.RESOLVED, ImportStage.DONE),
        (ImportStage.DONE, ImportStage.IDLE),
    ],
)
def test_invalid_transitions(current, target):
    with pytest.raises(InvalidStageTransition):
        current.advance(target)
