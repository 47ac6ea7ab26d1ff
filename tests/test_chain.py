"""
Delta chain resolution tests.
"""

from download.chain import ChainResolver

from fakes import SERVER, Build, build_name, publish_chain

A, B, C, D, E = (Build(build_name(d)) for d in ("20250101", "20250108", "20250115", "20250122", "20250129"))


def _resolver(client, paths):
    return ChainResolver(client, paths.downloads_dir)


def test_walks_chain_until_no_document(client, session, paths):
    publish_chain(session, [A, B, C])

    steps = _resolver(client, paths).fetch_chain(A.name)

    assert [(s.in_.name, s.out.name) for s in steps] == [(A.name, B.name), (B.name, C.name)]
    assert session.urls()[0] == SERVER.delta_metadata_url(A.name[:-4])


def test_accepts_name_without_zip(client, session, paths):
    publish_chain(session, [A, B])
    assert len(_resolver(client, paths).fetch_chain(A.name[:-4])) == 1


def test_no_delta_for_current_build(client, paths):
    assert _resolver(client, paths).fetch_chain(A.name) == []


def test_revoked_step_is_marked(client, session, paths):
    publish_chain(session, [A, B, C, D], revoked=(D.name,))

    steps = _resolver(client, paths).fetch_chain(A.name)

    assert [s.revoked for s in steps] == [False, False, True]


def test_trailing_revoked_steps_are_trimmed(client, session, paths):
    publish_chain(session, [A, B, C, D, E], revoked=(D.name, E.name))

    resolution = _resolver(client, paths).resolve(A.name, E.name)

    assert [s.out.name for s in resolution.steps] == [B.name, C.name]


def test_revoked_step_in_the_middle_is_kept(client, session, paths):
    publish_chain(session, [A, B, C, D, E], revoked=(D.name,))

    resolution = _resolver(client, paths).resolve(A.name, E.name)

    assert [s.out.name for s in resolution.steps] == [B.name, C.name, D.name, E.name]


def test_malformed_document_falls_back_to_revoked(client, session, paths):
    publish_chain(session, [A, B], revoked=(B.name,))
    session.add(SERVER.delta_metadata_url(A.name[:-4]), b"{broken")

    steps = _resolver(client, paths).fetch_chain(A.name)

    assert len(steps) == 1 and steps[0].revoked


def test_cached_latest_output_trims_chain(client, session, paths):
    publish_chain(session, [A, B, C])
    (paths.downloads_dir / C.name).write_bytes(C.signed)
    phases = []

    def factory(phase, name):
        phases.append((phase, name))
        return None

    resolution = _resolver(client, paths).resolve(A.name, C.name, factory)

    assert resolution.steps == []
    assert resolution.cached_output == str(paths.downloads_dir / C.name)
    assert resolution.cached_signed is True
    assert ("checking", C.name) in phases


def test_cached_output_must_be_latest_full(client, session, paths):
    publish_chain(session, [A, B, C])
    (paths.downloads_dir / B.name).write_bytes(B.store)

    resolution = _resolver(client, paths).resolve(A.name, C.name)

    assert len(resolution.steps) == 2
    assert resolution.cached_output is None


def test_cached_output_with_wrong_content_is_ignored(client, session, paths):
    publish_chain(session, [A, B])
    (paths.downloads_dir / B.name).write_bytes(b"x" * len(B.store))

    resolution = _resolver(client, paths).resolve(A.name, B.name)

    assert len(resolution.steps) == 1
    assert resolution.cached_output is None
