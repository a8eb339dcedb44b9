"""Tests for the module manager facade."""

import pytest
import yaml

from module_store_mcp.core.models import Module


def checksum(manager):
    return manager.checker.generate_checksum(manager.storage.load(manager.collection).data)


class TestAddModule:
    """Creation, naming and parent linkage"""

    def test_user_service_scenario(self, manager, add_module):
        add_module("UserService", "class", file_path="src/services/user.py")
        login = add_module(
            "login",
            "function",
            parent="UserService",
            parameters=[{"name": "username", "data_type": "str"}],
            return_type="bool",
        )

        assert login.hierarchical_name == "UserService.login"
        assert login.parent_module == "UserService"
        assert login.parameters[0].name == "username"

        parent = manager.get("UserService").data
        assert parent.children == ["UserService.login"]

        found = manager.search({"name": "login"}).data
        assert found.total == 1
        assert found.modules[0].hierarchical_name == "UserService.login"

    def test_assigns_id_and_timestamps(self, add_module):
        module = add_module("Thing", "variable")
        assert len(module.id) == 32
        assert module.created_at == module.updated_at
        assert module.data_type == "any"
        assert module.is_constant is False

    def test_legacy_type_spelling(self, add_module):
        assert add_module("group", "functionGroup").type == "function_group"

    @pytest.mark.parametrize(
        "data",
        [
            {"name": "9lives", "type": "class"},
            {"name": "has-dash", "type": "class"},
            {"name": "", "type": "class"},
            {"name": "ok", "type": "struct"},
            {"name": "ok", "type": "class", "file_path": "bad path?"},
            {"name": "ok", "type": "class", "access_modifier": "internal"},
            {"name": "ok", "type": "class", "parameters": []},
            {"name": "ok", "type": "class", "children": ["x"]},
            {"name": "ok", "type": "class", "hierarchical_name": "other"},
        ],
    )
    def test_validation_errors(self, manager, data):
        result = manager.add(data)
        assert not result.success
        assert result.error_code == "VALIDATION_ERROR"

    def test_duplicate(self, manager, add_module):
        add_module("UserService")
        result = manager.add({"name": "UserService", "type": "class"})
        assert result.error_code == "DUPLICATE_MODULE"

    def test_missing_parent(self, manager):
        result = manager.add({"name": "login", "type": "function", "parent_module": "Nope"})
        assert result.error_code == "NOT_FOUND"

    def test_nesting_depth_limit(self, manager, add_module):
        parent = None
        for name in ("a", "b", "c", "d", "e"):
            add_module(name, "file", parent=parent)
            parent = f"{parent}.{name}" if parent else name
        result = manager.add({"name": "f", "type": "file", "parent_module": parent})
        assert result.error_code == "VALIDATION_ERROR"

    def test_missing_dependency_is_only_a_warning(self, manager):
        result = manager.add({"name": "A", "type": "class", "dependencies": ["Later"]})
        assert result.success
        assert any("Later" in w for w in result.warnings)

    def test_repeated_segment_names(self, add_module):
        add_module("app", "file")
        assert add_module("app", "file", parent="app").hierarchical_name == "app.app"


class TestCycles:
    """Cycle closing edges are rejected, diamonds accepted"""

    def test_dependency_cycle_rejected_at_closing_edge(self, manager, add_module):
        add_module("A")
        add_module("B", dependencies=["A"])
        add_module("C", dependencies=["B"])

        result = manager.update("A", {"dependencies": ["C"]})
        assert result.error_code == "CIRCULAR_REFERENCE"
        assert manager.get("A").data.dependencies == []

    def test_cycle_through_forward_reference_rejected_on_add(self, manager, add_module):
        add_module("A", dependencies=["B"])
        result = manager.add({"name": "B", "type": "class", "dependencies": ["A"]})
        assert result.error_code == "CIRCULAR_REFERENCE"
        assert manager.count().data == 1

    def test_dependency_on_own_parent_chain(self, manager, add_module):
        add_module("A")
        result = manager.add({"name": "B", "type": "class", "parent_module": "A"})
        assert result.success
        assert manager.update("A", {"dependencies": ["A.B"]}).error_code == "CIRCULAR_REFERENCE"

    def test_diamond_accepted(self, add_module):
        add_module("D")
        add_module("A")
        add_module("B", parent="A", dependencies=["D"])
        add_module("C", parent="A", dependencies=["D"])


class TestUpdateModule:
    """Partial updates of editable fields"""

    def test_update_fields(self, manager, add_module):
        created = add_module("UserService", file_path="a.py")
        result = manager.update(
            "UserService", {"description": "Handles users", "inheritance": ["Base"]}
        )
        assert result.success
        updated = result.data
        assert updated.description == "Handles users"
        assert updated.inheritance == ["Base"]
        assert updated.id == created.id
        assert updated.created_at == created.created_at
        assert manager.get("UserService").data.description == "Handles users"

    @pytest.mark.parametrize(
        "patch",
        [
            {"name": "Other"},
            {"type": "function"},
            {"id": "x"},
            {"hierarchical_name": "Other"},
            {"parent_module": "Other"},
            {"children": []},
            {"created_at": "2001-01-01T00:00:00+00:00"},
        ],
    )
    def test_immutable_fields(self, manager, add_module, patch):
        add_module("UserService")
        assert manager.update("UserService", patch).error_code == "VALIDATION_ERROR"

    def test_fields_of_other_types_rejected(self, manager, add_module):
        add_module("UserService")
        result = manager.update("UserService", {"return_type": "int"})
        assert result.error_code == "VALIDATION_ERROR"

    def test_update_missing_module(self, manager):
        assert manager.update("Nope", {"description": "x"}).error_code == "NOT_FOUND"


class TestDeleteModule:
    """Deletion rules"""

    def test_add_then_delete_restores_checksum(self, manager, add_module):
        add_module("UserService")
        add_module("login", "function", parent="UserService")
        before = checksum(manager)

        add_module("logout", "function", parent="UserService")
        assert checksum(manager) != before

        assert manager.delete("UserService.logout").success
        assert checksum(manager) == before

    def test_delete_with_children_fails(self, manager, add_module):
        add_module("UserService")
        add_module("login", "function", parent="UserService")

        result = manager.delete("UserService")
        assert result.error_code == "HAS_CHILDREN"
        assert result.error.details == ["UserService.login"]

        assert manager.delete("UserService.login").success
        assert manager.delete("UserService").success
        assert manager.count().data == 0

    def test_delete_unlinks_from_parent(self, manager, add_module):
        add_module("UserService")
        add_module("login", "function", parent="UserService")
        manager.delete("UserService.login")
        assert manager.get("UserService").data.children == []

    def test_delete_missing(self, manager):
        assert manager.delete("Nope").error_code == "NOT_FOUND"

    def test_delete_dependency_target_warns(self, manager, add_module):
        add_module("A")
        add_module("B", dependencies=["A"])
        result = manager.delete("A")
        assert result.success
        assert result.warnings


class TestSearch:
    """Filters, ordering and pagination"""

    @pytest.fixture
    def populated(self, add_module):
        add_module("UserService", file_path="src/user.py", description="User accounts")
        add_module("login", "function", parent="UserService", access_modifier="public")
        add_module("hash_password", "function", parent="UserService", access_modifier="private")
        add_module("OrderService", file_path="src/order.py")
        add_module("MAX_USERS", "variable", file_path="src/config.py")

    def test_insertion_order_by_default(self, manager, populated):
        names = [m.name for m in manager.search({}).data.modules]
        assert names == ["UserService", "login", "hash_password", "OrderService", "MAX_USERS"]

    def test_filters_are_case_insensitive_substrings(self, manager, populated):
        assert manager.search({"name": "service"}).data.total == 2
        assert manager.search({"file_path": "ORDER"}).data.total == 1
        assert manager.search({"description": "account"}).data.total == 1
        assert manager.search({"parent_module": "userservice"}).data.total == 2

    def test_exact_filters(self, manager, populated):
        assert manager.search({"type": "function"}).data.total == 2
        result = manager.search({"type": "function", "access_modifier": "private"}).data
        assert [m.name for m in result.modules] == ["hash_password"]

    def test_keyword(self, manager, populated):
        result = manager.search({"keyword": "config"}).data
        assert [m.name for m in result.modules] == ["MAX_USERS"]

    def test_pagination(self, manager, populated):
        page = manager.search({"limit": 2, "offset": 2}).data
        assert page.total == 5
        assert [m.name for m in page.modules] == ["hash_password", "OrderService"]

    def test_sorting(self, manager, populated):
        by_name = manager.search({"sort_by": "name"}).data.modules
        assert [m.name for m in by_name][0] == "hash_password"

        relevance = manager.search({"name": "login", "sort_by": "relevance"}).data.modules
        assert relevance[0].name == "login"

    def test_fuzzy_name(self, manager, populated):
        assert manager.search({"name": "logn"}).data.total == 0
        assert manager.search({"name": "logn", "fuzzy": True}).data.total == 1

    @pytest.mark.parametrize(
        "criteria",
        [{"limit": 0}, {"offset": -1}, {"sort_by": "size"}, {"colour": "red"}],
    )
    def test_invalid_criteria(self, manager, criteria):
        assert manager.search(criteria).error_code == "VALIDATION_ERROR"


class TestTypeStructure:
    """Ancestors, descendants and references of a type"""

    def test_structure(self, manager, add_module):
        add_module("app", "file")
        add_module("User", parent="app")
        add_module("save", "function", parent="app.User")
        add_module("Admin", inheritance=["User"])
        add_module("current_user", "variable", data_type="User")
        add_module("find_user", "function", return_type="app.User")

        structure = manager.get_type_structure("User").data

        assert structure.hierarchy == ["app", "app.User"]
        assert structure.descendants == ["app.User.save"]
        related = {m.hierarchical_name for m in structure.related_modules}
        assert related == {
            "app", "app.User", "app.User.save", "Admin", "current_user", "find_user"
        }
        kinds = {(r.source, r.relationship_type) for r in structure.relationships}
        assert ("Admin", "inheritance") in kinds
        assert ("current_user", "reference") in kinds
        assert ("find_user", "reference") in kinds
        assert ("app.User.save", "parent-child") in kinds

    def test_unknown_type(self, manager):
        assert manager.get_type_structure("Ghost").error_code == "NOT_FOUND"


class TestManagerIntegrity:
    """Integrity check and repair through the manager"""

    def test_clean_collection(self, manager, add_module):
        add_module("A")
        report = manager.check_integrity().data
        assert report["result"]["is_valid"]
        assert report["issues"] == []
        assert report["repair"] is None

    def test_auto_repair_removes_dangling_children(self, manager, storage, add_module):
        add_module("A")
        modules = storage.load("modules").data
        module = next(iter(modules.values()))
        module.children.append("A.ghost")
        assert storage.save("modules", modules).success

        report = manager.check_integrity().data
        assert not report["result"]["is_valid"]

        repaired = manager.check_integrity(auto_repair=True).data
        assert repaired["repair"]["success"]
        assert repaired["result"]["is_valid"]
        assert manager.get("A").data.children == []
        assert any(p.name.startswith("pre-repair_modules_") for p in storage.backup_path.iterdir())

    def test_lists_and_types(self, manager, add_module):
        add_module("A")
        add_module("f", "function")
        assert manager.count().data == 2
        assert [m.name for m in manager.list_modules("function").data] == ["f"]
        assert "function_group" in manager.module_types().data
        assert isinstance(manager.list_modules().data[0], Module)


class TestNameKeyedCollection:
    """Collections whose map keys are hierarchical names instead of ids"""

    @pytest.fixture
    def name_keyed(self, manager):
        path = manager.storage.collection_path(manager.collection)
        path.write_text(
            yaml.safe_dump(
                {
                    "metadata": {"version": "1.0.0"},
                    "modules": {
                        "UserService": {
                            "id": "3f1c2a",
                            "name": "UserService",
                            "hierarchical_name": "UserService",
                            "type": "class",
                            "file_path": "src/user.ts",
                        }
                    },
                }
            ),
            encoding="utf-8",
        )
        return path

    def test_add_update_delete(self, manager, name_keyed):
        result = manager.add({"name": "login", "type": "function", "parent_module": "UserService"})
        assert result.success, result.error
        assert manager.update("UserService", {"description": "accounts"}).success

        stored = yaml.safe_load(name_keyed.read_text(encoding="utf-8"))["modules"]
        assert "3f1c2a" in stored
        assert "UserService" not in stored
        assert stored["3f1c2a"]["children"] == ["UserService.login"]

        assert manager.delete("UserService.login").success
        assert manager.delete("UserService").success
        assert manager.count().data == 0
