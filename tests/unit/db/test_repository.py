"""Tests for the source/chunk/projection repository."""

from __future__ import annotations

import pytest

from simkb.db.graph import GraphRepository
from simkb.db.models import Category, Chunk, Source
from simkb.db.repository import Repository
from simkb.db.vectors import VEC_INDEX_TABLE, ensure_vec_index
from simkb.errors import ConsistencyError, NotFoundError, ValidationError

CLIENT = Category.CLIENT_FACING
OPERATOR = Category.OPERATOR_FACING


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _source(tenant: str = "t1", category: Category = CLIENT, title: str = "Doc", **kw) -> Source:
    return Source(tenant_id=tenant, category=category, kind=kw.pop("kind", "free_text"), title=title, **kw)


def _add(repo: Repository, tenant: str = "t1", category: Category = CLIENT, n: int = 2, **kw) -> str:
    src = _source(tenant, category, **kw)
    repo.create_source_with_chunks(
        src,
        [
            Chunk(source_id="", seq=i + 1, content=f"chunk {i}", tokens=2, embedding=[1.0, float(i)])
            for i in range(n)
        ],
    )
    return src.id


# ------------------------------------------------------------------
# Sources
# ------------------------------------------------------------------


def test_create_source_assigns_uuid(repo):
    source_id = repo.create_source(_source())
    assert len(source_id) == 36
    got = repo.get_source("t1", source_id)
    assert got.title == "Doc"
    assert got.category is CLIENT
    assert got.status == "active"


def test_category_stored_as_internal_code(repo, tmp_db):
    source_id = repo.create_source(_source(category=OPERATOR))
    row = tmp_db.execute("SELECT category FROM sources WHERE id = ?", (source_id,)).fetchone()
    assert row["category"] == "operador"


@pytest.mark.parametrize(
    "kwargs, code",
    [
        ({"category": "staff"}, "invalid_category"),
        ({"kind": "pdf"}, "invalid_kind"),
        ({"title": "   "}, "missing_title"),
        ({"status": "deleted"}, "invalid_status"),
    ],
)
def test_create_source_validation(repo, kwargs, code):
    with pytest.raises(ValidationError) as exc:
        repo.create_source(_source(**kwargs))
    assert exc.value.code == code
    assert repo.list_sources("t1", status=None) == []


def test_get_source_is_tenant_scoped(repo):
    source_id = _add(repo, tenant="t1")
    assert repo.get_source("t2", source_id) is None
    with pytest.raises(NotFoundError) as other:
        repo.require_source("t2", source_id)
    with pytest.raises(NotFoundError) as missing:
        repo.require_source("t2", "no-such-id")
    assert str(other.value) == f"source '{source_id}' not found"
    assert str(missing.value) == "source 'no-such-id' not found"


def test_list_sources_filters(repo):
    a = _add(repo, title="A")
    b = _add(repo, category=OPERATOR, title="B")
    _add(repo, tenant="t2", title="C")
    repo.set_source_status("t1", a, "archived")

    assert [s.id for s in repo.list_sources("t1")] == [b]
    assert [s.id for s in repo.list_sources("t1", status="archived")] == [a]
    assert {s.id for s in repo.list_sources("t1", status=None)} == {a, b}
    assert repo.list_sources("t1", category=CLIENT, status=None)[0].id == a


def test_list_sources_newest_first(repo):
    ids = [_add(repo, title=f"S{i}") for i in range(3)]
    assert [s.id for s in repo.list_sources("t1")] == list(reversed(ids))


def test_set_source_status_returns_previous(repo):
    source_id = _add(repo)
    before = repo.set_source_status("t1", source_id, "archived")
    assert before.status == "active"
    assert repo.get_source("t1", source_id).status == "archived"


def test_source_content_free_text_only(repo):
    text_id = _add(repo, n=3)
    assert repo.source_content("t1", text_id) == "chunk 0\n\nchunk 1\n\nchunk 2"

    doc_id = _add(repo, kind="document")
    with pytest.raises(ValidationError) as exc:
        repo.source_content("t1", doc_id)
    assert exc.value.code == "only_free_text"


# ------------------------------------------------------------------
# Chunk scope interceptor
# ------------------------------------------------------------------


def test_chunks_inherit_scope_from_source(repo):
    source_id = repo.create_source(_source(category=OPERATOR))
    chunk_id = repo.add_chunk(Chunk(source_id=source_id, seq=1, content="x"))
    chunk = repo.get_chunk("t1", chunk_id)
    assert chunk.tenant_id == "t1"
    assert chunk.category is OPERATOR


def test_chunk_tenant_mismatch_rejected(repo):
    source_id = repo.create_source(_source(tenant="X"))
    with pytest.raises(ConsistencyError, match="'Y'.*'X'"):
        repo.add_chunk(Chunk(source_id=source_id, seq=1, content="x", tenant_id="Y"))
    assert repo.count_chunks("X") == 0
    assert repo.count_chunks("Y") == 0


def test_chunk_category_mismatch_rejected(repo):
    source_id = repo.create_source(_source(category=CLIENT))
    with pytest.raises(ConsistencyError, match="operator-facing.*client-facing"):
        repo.add_chunk(Chunk(source_id=source_id, seq=1, content="x", category=OPERATOR))


def test_chunk_for_missing_source_rejected(repo):
    with pytest.raises(ConsistencyError):
        repo.add_chunk(Chunk(source_id="ghost", seq=1, content="x"))


def test_create_source_with_chunks_is_atomic(repo):
    src = _source(tenant="X")
    with pytest.raises(ConsistencyError):
        repo.create_source_with_chunks(
            src,
            [
                Chunk(source_id="", seq=1, content="ok"),
                Chunk(source_id="", seq=2, content="bad", tenant_id="Y"),
            ],
        )
    assert repo.list_sources("X", status=None) == []
    assert repo.count_chunks("X") == 0


def test_update_chunk_scope_rechecks(repo):
    a = _add(repo, category=CLIENT, n=1)
    b = _add(repo, category=OPERATOR, n=1)
    chunk = repo.list_chunks("t1", a)[0]

    with pytest.raises(ConsistencyError):
        repo.update_chunk_scope("t1", chunk.id, category=OPERATOR)
    assert repo.get_chunk("t1", chunk.id).category is CLIENT

    moved = repo.update_chunk_scope("t1", chunk.id, source_id=b)
    assert moved.source_id == b
    assert moved.category is OPERATOR


def test_update_chunk_scope_cannot_move_into_other_tenant(repo):
    mine = _add(repo, tenant="A", n=1)
    theirs = _add(repo, tenant="B", n=1)
    chunk = repo.list_chunks("A", mine)[0]

    with pytest.raises(NotFoundError) as other:
        repo.update_chunk_scope("A", chunk.id, source_id=theirs)
    with pytest.raises(NotFoundError) as missing:
        repo.update_chunk_scope("A", chunk.id, source_id="no-such-id")
    assert str(other.value) == f"source '{theirs}' not found"
    assert str(missing.value) == "source 'no-such-id' not found"

    still = repo.get_chunk("A", chunk.id)
    assert still is not None
    assert still.source_id == mine
    assert repo.count_chunks("B") == 1


def test_update_chunk_scope_rejects_foreign_tenant_value(repo):
    source_id = _add(repo, tenant="A", n=1)
    chunk = repo.list_chunks("A", source_id)[0]
    with pytest.raises(ConsistencyError, match="'B'.*'A'"):
        repo.update_chunk_scope("A", chunk.id, tenant="B")
    assert repo.get_chunk("A", chunk.id).tenant_id == "A"


def test_delete_chunk_leaves_source(repo):
    source_id = _add(repo, n=2)
    first = repo.list_chunks("t1", source_id)[0]
    repo.delete_chunk("t1", first.id)
    assert repo.count_chunks("t1", source_id) == 1
    assert repo.get_source("t1", source_id) is not None


def test_list_chunks_ordered_by_seq(repo):
    source_id = repo.create_source(_source())
    repo.append_chunks(
        source_id,
        "t1",
        CLIENT,
        [Chunk(source_id="", seq=2, content="b"), Chunk(source_id="", seq=1, content="a")],
    )
    assert [c.content for c in repo.list_chunks("t1", source_id)] == ["a", "b"]


# ------------------------------------------------------------------
# Deletion cascade
# ------------------------------------------------------------------


def test_delete_source_cascades(repo, graph_repo, tmp_db):
    ensure_vec_index(tmp_db, 2)
    source_id = _add(repo, n=2)
    chunk_id = repo.list_chunks("t1", source_id)[0].id
    repo.upsert_projection("t1", chunk_id, "pca", 0.1, 0.2)
    node_id, _ = graph_repo.upsert_node("t1", CLIENT, "Refund", source_id=source_id)

    repo.delete_source("t1", source_id)

    assert repo.count_chunks("t1") == 0
    assert tmp_db.execute("SELECT COUNT(*) FROM chunk_projections").fetchone()[0] == 0
    assert tmp_db.execute(f"SELECT COUNT(*) FROM {VEC_INDEX_TABLE}").fetchone()[0] == 0
    node = graph_repo.get_node("t1", node_id)
    assert node is not None
    assert node.source_id is None


def test_delete_source_other_tenant_not_found(repo):
    source_id = _add(repo, tenant="t1")
    with pytest.raises(NotFoundError):
        repo.delete_source("t2", source_id)
    assert repo.get_source("t1", source_id) is not None


# ------------------------------------------------------------------
# Extraction candidates
# ------------------------------------------------------------------


def test_extraction_candidates_active_only_and_bounded(repo):
    active = _add(repo, n=3)
    archived = _add(repo, n=2)
    repo.set_source_status("t1", archived, "archived")
    _add(repo, category=OPERATOR, n=2)

    chunks = repo.extraction_candidates("t1", CLIENT, limit=10)
    assert {c.source_id for c in chunks} == {active}
    assert len(repo.extraction_candidates("t1", CLIENT, limit=2)) == 2
    assert [c.id for c in chunks] == sorted((c.id for c in chunks), reverse=True)


# ------------------------------------------------------------------
# Embeddings + projections
# ------------------------------------------------------------------


def test_set_chunk_embedding_drops_projections(repo, tmp_db):
    source_id = _add(repo, n=1)
    chunk_id = repo.list_chunks("t1", source_id)[0].id
    repo.upsert_projection("t1", chunk_id, "pca", 1.0, 2.0)
    repo.set_chunk_embedding("t1", chunk_id, [0.0, 1.0])
    assert repo.get_chunk("t1", chunk_id).embedding == [0.0, 1.0]
    assert repo.list_projections("t1") == []


def test_upsert_projection_overwrites(repo):
    source_id = _add(repo, n=1)
    chunk_id = repo.list_chunks("t1", source_id)[0].id
    repo.upsert_projection("t1", chunk_id, "pca", 1.0, 2.0)
    repo.upsert_projection("t1", chunk_id, "pca", 3.0, 4.0)
    repo.upsert_projection("t1", chunk_id, "umap", 5.0, 6.0)

    pca = repo.list_projections("t1", algorithm="pca")
    assert len(pca) == 1
    assert (pca[0].x, pca[0].y) == (3.0, 4.0)
    assert len(repo.list_projections("t1", algorithm="umap")) == 1


def test_upsert_projection_requires_tenant_chunk(repo):
    source_id = _add(repo, tenant="t1", n=1)
    chunk_id = repo.list_chunks("t1", source_id)[0].id
    with pytest.raises(NotFoundError):
        repo.upsert_projection("t2", chunk_id, "pca", 0.0, 0.0)


def test_list_projections_truncates_before_anonymizer(repo):
    src = _source()
    repo.create_source_with_chunks(src, [Chunk(source_id="", seq=1, content="a" * 500)])
    chunk_id = repo.list_chunks("t1", src.id)[0].id
    repo.upsert_projection("t1", chunk_id, "pca", 0.0, 0.0)

    seen: list[str] = []

    def anonymizer(text: str) -> str:
        seen.append(text)
        return text.upper()

    points = repo.list_projections("t1", preview_chars=300, anonymizer=anonymizer)
    assert len(points[0].content_snippet) == 300
    assert points[0].content_snippet == "A" * 300
    assert "a" * 300 in seen
    assert points[0].source_title == "DOC"


def test_replace_projections_swaps_tenant_points(repo):
    a = _add(repo, tenant="t1", n=2)
    b = _add(repo, tenant="t2", n=1)
    c1, c2 = (c.id for c in repo.list_chunks("t1", a))
    other = repo.list_chunks("t2", b)[0].id
    repo.upsert_projection("t1", c1, "pca", 0.0, 0.0)
    repo.upsert_projection("t2", other, "pca", 9.0, 9.0)

    assert repo.replace_projections("t1", "pca", [(c2, 1.0, 1.0)]) == 1
    assert [p.chunk_id for p in repo.list_projections("t1")] == [c2]
    assert [p.chunk_id for p in repo.list_projections("t2")] == [other]
