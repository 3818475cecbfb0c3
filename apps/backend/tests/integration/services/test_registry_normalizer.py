"""Registry normalizer against an in-memory SQLite store."""
import pytest
from sqlmodel import select

from models import RegistryMetadata, RegistryRepository, Repository, RepositoryFacet, SyncLog
from src.services.registry_normalizer import index_registry


async def _all(db, model):
    return list((await db.exec(select(model))).all())


async def _association_set(db, registry_name):
    rows = (await db.exec(
        select(RegistryRepository).where(RegistryRepository.registry_name == registry_name)
    )).all()
    return sorted((r.title, r.repository_id, tuple(r.categories)) for r in rows)


async def _facet_set(db, registry_name):
    rows = (await db.exec(
        select(RepositoryFacet).where(RepositoryFacet.registry_name == registry_name)
    )).all()
    return sorted((f.repository_id, f.category_name, f.language) for f in rows)


class TestIndexRegistry:
    @pytest.mark.asyncio
    async def test_writes_repositories_associations_and_facets(self, db, go_document):
        result = await index_registry(db, "go", go_document)

        assert result.items_indexed == 3
        assert result.repositories == 3
        assert result.total_stars == 60000

        repos = {r.name: r for r in await _all(db, Repository)}
        assert set(repos) == {"gin", "echo", "testify"}
        assert repos["gin"].stars == 50000
        assert repos["gin"].language == "Go"

        facets = await _facet_set(db, "go")
        assert (repos["gin"].id, "Web Frameworks", "Go") in facets
        assert (repos["testify"].id, "Testing", "Go") in facets

        metadata = await db.get(RegistryMetadata, "go")
        assert metadata.title == "Awesome Go"
        assert metadata.total_items == 3
        assert metadata.total_stars == 60000

    @pytest.mark.asyncio
    async def test_is_idempotent(self, db, go_document):
        await index_registry(db, "go", go_document)
        associations = await _association_set(db, "go")
        facets = await _facet_set(db, "go")

        await index_registry(db, "go", go_document)

        assert await _association_set(db, "go") == associations
        assert await _facet_set(db, "go") == facets
        assert len(await _all(db, Repository)) == 3

    @pytest.mark.asyncio
    async def test_repository_in_two_sections_gets_both_categories(self, db, make_document, make_item):
        document = make_document("Go", {
            "Web Frameworks": [make_item("Gin", "gin-gonic", "gin", 100, "Go")],
            "Testing": [make_item("Gin again", "gin-gonic", "gin", 120, "Go")],
        })

        await index_registry(db, "go", document)

        associations = await _all(db, RegistryRepository)
        assert len(associations) == 1
        assert associations[0].title == "Gin"
        assert associations[0].categories == ["Web Frameworks", "Testing"]
        assert len(await _facet_set(db, "go")) == 2
        # Later sightings refresh repository fields
        assert (await _all(db, Repository))[0].stars == 120

    @pytest.mark.asyncio
    async def test_repository_shared_across_registries(self, db, make_document, make_item):
        shared = make_item("Cobra", "spf13", "cobra", 30000, "Go")
        await index_registry(db, "go", make_document("Go", {"CLI": [shared]}))
        await index_registry(db, "cli", make_document("CLI", {"Frameworks": [shared]}))

        repos = await _all(db, Repository)
        assert len(repos) == 1
        assert {a.registry_name for a in await _all(db, RegistryRepository)} == {"go", "cli"}

    @pytest.mark.asyncio
    async def test_missing_description_keeps_shared_repository_description(
        self, db, make_document, make_item
    ):
        described = make_item("Cobra", "spf13", "cobra", 30000, "Go", description="CLI commander")
        bare = make_item("Cobra", "spf13", "cobra", 30000, "Go")
        bare["description"] = None

        await index_registry(db, "go", make_document("Go", {"CLI": [described]}))
        await index_registry(db, "cli", make_document("CLI", {"Frameworks": [bare]}))

        repo = (await _all(db, Repository))[0]
        await db.refresh(repo)
        assert repo.description == "CLI commander"

    @pytest.mark.asyncio
    async def test_removed_items_disappear_on_reindex(self, db, make_document, make_item):
        await index_registry(db, "go", make_document("Go", {"Tools": [
            make_item("Keep", "a", "keep", 1),
            make_item("Drop", "a", "drop", 1),
        ]}))
        await index_registry(db, "go", make_document("Go", {"Tools": [
            make_item("Keep", "a", "keep", 1),
        ]}))

        assert [a.title for a in await _all(db, RegistryRepository)] == ["Keep"]
        metadata = await db.get(RegistryMetadata, "go")
        await db.refresh(metadata)
        assert metadata.total_items == 1

    @pytest.mark.asyncio
    async def test_items_without_repo_info_are_kept_and_deduplicated(self, db, make_document, make_item):
        document = make_document("Go", {
            "Resources Hub": [make_item("Go Blog"), make_item("Go Blog")],
            "Web Frameworks": [make_item("Gin", "gin-gonic", "gin", 10, "Go")],
        })

        result = await index_registry(db, "go", document)

        associations = await _all(db, RegistryRepository)
        blog = [a for a in associations if a.title == "Go Blog"]
        assert len(blog) == 1
        assert blog[0].repository_id is None
        assert blog[0].description == "Go Blog description"
        assert result.repositories == 1
        # Only repository-backed items get facets and count toward totals
        assert len(await _facet_set(db, "go")) == 1
        assert (await db.get(RegistryMetadata, "go")).total_items == 1

    @pytest.mark.asyncio
    async def test_nested_children_are_flattened(self, db, make_document, make_item):
        parent = make_item("Parent", "a", "parent", 1, children=[
            make_item("Child", "a", "child", 2),
        ])

        await index_registry(db, "go", make_document("Go", {"Databases": [parent]}))

        titles = sorted(a.title for a in await _all(db, RegistryRepository))
        assert titles == ["Child", "Parent"]

    @pytest.mark.asyncio
    async def test_untitled_items_are_skipped(self, db, make_document, make_item):
        untitled = make_item("", "a", "nameless", 5)

        result = await index_registry(db, "go", make_document("Go", {"Databases": [
            untitled, make_item("Named", "a", "named", 1),
        ]}))

        assert result.skipped_items == 1
        assert [a.title for a in await _all(db, RegistryRepository)] == ["Named"]

    @pytest.mark.asyncio
    async def test_meta_sections_contribute_no_category(self, db, make_document, make_item):
        await index_registry(db, "go", make_document("Go", {
            "Contents": [make_item("Gin", "gin-gonic", "gin", 1)],
        }))

        association = (await _all(db, RegistryRepository))[0]
        assert association.categories == []
        assert await _facet_set(db, "go") == []

    @pytest.mark.asyncio
    async def test_writes_success_sync_log(self, db, go_document):
        await index_registry(db, "go", go_document)

        logs = await _all(db, SyncLog)
        assert [(log.registry_name, log.status, log.items_synced) for log in logs] == [("go", "success", 3)]
