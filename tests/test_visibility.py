from datetime import datetime, timedelta, timezone

import pytest

import cours_lifecycle
import diffusion
import identity
import visibility
from exceptions import AccessDeniedError, DenialReason, NotFoundError, StorageInconsistencyError
from principal import Principal, RoleEtudiant
from tests.conftest import make_cours, make_student

NOW = datetime(2025, 3, 15, 12, 0)


@pytest.fixture
def live_cours(session, admin, prof, storage, groupe):
    cours = make_cours(session, prof, storage, [groupe], titre="Algorithmique", description="Tris et graphes")
    return cours_lifecycle.validate_cours(session, admin, cours.id_cours)


def test_pending_cours_is_invisible_until_validated(session, admin, prof, student, storage, groupe):
    cours = make_cours(session, prof, storage, [groupe])

    assert visibility.list_visible_cours(session, student, NOW) == []
    assert visibility.check_access(student, cours, NOW) is DenialReason.NOT_VALIDATED

    cours_lifecycle.validate_cours(session, admin, cours.id_cours)

    assert [c.id_cours for c in visibility.list_visible_cours(session, student, NOW)] == [cours.id_cours]


def test_other_group_sees_nothing(session, admin, live_cours, autre_groupe):
    other = make_student(session, admin, autre_groupe)

    assert visibility.list_visible_cours(session, other, NOW) == []
    assert visibility.check_access(other, live_cours, NOW) is DenialReason.WRONG_GROUP


def test_window_not_yet_open(session, prof, student, live_cours, groupe):
    diffusion.set_window(session, prof, live_cours.id_cours, groupe.id_groupe, NOW + timedelta(days=1), None)

    assert visibility.list_visible_cours(session, student, NOW) == []
    assert visibility.check_access(student, live_cours, NOW) is DenialReason.WINDOW_NOT_OPEN
    assert visibility.can_access(student, live_cours, NOW + timedelta(days=2))


def test_window_closed(session, prof, student, live_cours, groupe):
    diffusion.set_window(session, prof, live_cours.id_cours, groupe.id_groupe, None, NOW - timedelta(minutes=1))

    assert visibility.check_access(student, live_cours, NOW) is DenialReason.WINDOW_CLOSED
    assert visibility.list_visible_cours(session, student, NOW) == []


def test_window_bounds_are_inclusive(session, prof, student, live_cours, groupe):
    diffusion.set_window(session, prof, live_cours.id_cours, groupe.id_groupe, NOW, NOW)
    assert visibility.can_access(student, live_cours, NOW)


def test_aware_instant_is_compared_in_utc(session, prof, student, live_cours, groupe):
    tana = timezone(timedelta(hours=3))
    diffusion.set_window(session, prof, live_cours.id_cours, groupe.id_groupe, None, NOW)

    # 15:00 à UTC+3 correspond à NOW
    assert visibility.can_access(student, live_cours, datetime(2025, 3, 15, 15, 0, tzinfo=tana))
    assert visibility.check_access(student, live_cours, datetime(2025, 3, 15, 15, 1, tzinfo=tana)) \
        is DenialReason.WINDOW_CLOSED
    visible = visibility.list_visible_cours(session, student, datetime(2025, 3, 15, 14, 0, tzinfo=tana))
    assert [c.id_cours for c in visible] == [live_cours.id_cours]


@pytest.mark.parametrize("publie, valide, same_group, expected", [
    (True, True, True, None),
    (False, True, True, DenialReason.NOT_PUBLISHED),
    (True, False, True, DenialReason.NOT_VALIDATED),
    (False, False, True, DenialReason.NOT_PUBLISHED),
    (True, True, False, DenialReason.WRONG_GROUP),
])
def test_access_requires_every_condition(session, admin, student, live_cours, autre_groupe,
                                         publie, valide, same_group, expected):
    live_cours.est_publie = publie
    live_cours.est_valide = valide
    if not same_group:
        diffusion.replace_diffusion(session, live_cours, [autre_groupe.id_groupe])
    session.commit()

    assert visibility.check_access(student, live_cours, NOW) is expected
    visible = [c.id_cours for c in visibility.list_visible_cours(session, student, NOW)]
    assert (live_cours.id_cours in visible) == (expected is None)


def test_non_students_never_have_access(admin, prof, live_cours):
    assert visibility.check_access(admin, live_cours, NOW) is DenialReason.NOT_A_STUDENT
    assert visibility.check_access(prof, live_cours, NOW) is DenialReason.NOT_A_STUDENT


def test_student_without_profile(live_cours):
    orphan = Principal(user_id=99, name="Sans profil", email="x@courshub.test", role=RoleEtudiant(None))
    assert visibility.check_access(orphan, live_cours, NOW) is DenialReason.NO_GROUP
    with pytest.raises(AccessDeniedError) as exc:
        visibility.list_visible_cours(None, orphan, NOW)
    assert exc.value.reason is DenialReason.NO_GROUP


def test_listing_is_student_only(session, prof):
    with pytest.raises(AccessDeniedError) as exc:
        visibility.list_visible_cours(session, prof, NOW)
    assert exc.value.reason is DenialReason.NOT_A_STUDENT


def test_listing_is_newest_first(session, admin, prof, student, storage, groupe):
    ids = []
    for titre in ("Premier", "Deuxième", "Troisième"):
        cours = make_cours(session, prof, storage, [groupe], titre=titre)
        cours_lifecycle.validate_cours(session, admin, cours.id_cours)
        ids.append(cours.id_cours)

    listed = [c.id_cours for c in visibility.list_visible_cours(session, student, NOW)]
    assert listed == list(reversed(ids))


def test_search_filters_within_visible(session, admin, prof, student, storage, groupe, live_cours):
    make_cours(session, prof, storage, [groupe], titre="Graphes avancés")  # non validé

    found = visibility.search_visible_cours(session, student, "GRAPHES", NOW)
    assert [c.id_cours for c in found] == [live_cours.id_cours]
    assert visibility.search_visible_cours(session, student, "réseaux", NOW) == []
    assert len(visibility.search_visible_cours(session, student, "  ", NOW)) == 1


def test_latest_returns_at_most_five(session, admin, prof, student, storage, groupe):
    for i in range(7):
        cours = make_cours(session, prof, storage, [groupe], titre=f"Séance {i}")
        cours_lifecycle.validate_cours(session, admin, cours.id_cours)

    latest = visibility.latest_visible_cours(session, student, now=NOW)
    assert [c.titre for c in latest] == [f"Séance {i}" for i in (6, 5, 4, 3, 2)]


def test_download_streams_the_file(session, student, storage, live_cours):
    result = visibility.resolve_download(session, student, storage, live_cours.id_cours, NOW)
    with result.stream as stream:
        assert stream.read() == b"%PDF-1.4 contenu"
    assert result.filename == "Algorithmique.pdf"


def test_download_unknown_cours_is_not_found(session, student, storage):
    with pytest.raises(NotFoundError) as exc:
        visibility.resolve_download(session, student, storage, 404, NOW)
    assert exc.value.details["reason"] is DenialReason.UNKNOWN_COURS


def test_download_by_wrong_group_is_denied(session, admin, storage, live_cours, autre_groupe):
    other = make_student(session, admin, autre_groupe)
    with pytest.raises(AccessDeniedError) as exc:
        visibility.resolve_download(session, other, storage, live_cours.id_cours, NOW)
    assert exc.value.reason is DenialReason.WRONG_GROUP
    assert exc.value.details["votre_groupe_id"] == autre_groupe.id_groupe


def test_download_rechecks_the_window(session, prof, student, storage, live_cours, groupe):
    fermeture = NOW + timedelta(hours=1)
    diffusion.set_window(session, prof, live_cours.id_cours, groupe.id_groupe, None, fermeture)

    listed = visibility.list_visible_cours(session, student, NOW)
    assert [c.id_cours for c in listed] == [live_cours.id_cours]

    with pytest.raises(AccessDeniedError) as exc:
        visibility.resolve_download(session, student, storage, live_cours.id_cours, fermeture + timedelta(seconds=1))
    assert exc.value.reason is DenialReason.WINDOW_CLOSED


def test_download_with_missing_file(session, student, storage, live_cours):
    storage.delete(live_cours.fichier_url)
    with pytest.raises(StorageInconsistencyError):
        visibility.resolve_download(session, student, storage, live_cours.id_cours, NOW)


def test_download_accepts_public_prefix(session, student, storage, live_cours):
    live_cours.fichier_url = "/storage/" + live_cours.fichier_url
    session.commit()

    result = visibility.resolve_download(session, student, storage, live_cours.id_cours, NOW)
    result.stream.close()
    assert result.filename == "Algorithmique.pdf"


def test_download_by_teacher_is_denied(session, prof, storage, live_cours):
    with pytest.raises(AccessDeniedError) as exc:
        visibility.resolve_download(session, prof, storage, live_cours.id_cours, NOW)
    assert exc.value.reason is DenialReason.NOT_A_STUDENT


def test_group_change_moves_visibility(session, admin, student, live_cours, autre_groupe):
    identity.update_user(session, admin, student.user_id, id_groupe=autre_groupe.id_groupe)
    assert visibility.check_access(student, live_cours, NOW) is DenialReason.WRONG_GROUP
