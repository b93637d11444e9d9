from __future__ import annotations

import copy

import pytest

from fhir_package_loader.domain.definitions import DefinitionStore, merge
from fhir_package_loader.domain.models import LoadedPackage, TypeCategory


def profile(id_, version=None, **extra):
    definition = {
        "resourceType": "StructureDefinition",
        "id": id_,
        "name": id_,
        "url": f"http://example.org/StructureDefinition/{id_}",
        "kind": "resource",
        "type": "Patient",
        "derivation": "constraint",
        **extra,
    }
    if version is not None:
        definition["version"] = version
    return definition


def store_with(label, *definitions, package_json=None):
    return merge(
        LoadedPackage(package=label, definitions=list(definitions), package_json=package_json),
        DefinitionStore(),
    )


class TestFishForFHIR:
    def test_finds_by_id_name_and_url(self, r4_store):
        by_id = r4_store.fish_for_fhir("vitalsigns")
        assert by_id["url"] == "http://hl7.org/fhir/StructureDefinition/vitalsigns"
        assert r4_store.fish_for_fhir("observation-vitalsigns") == by_id
        assert r4_store.fish_for_fhir("http://hl7.org/fhir/StructureDefinition/vitalsigns") == by_id

    @pytest.mark.parametrize(
        "item, category, resource_type",
        [
            ("Condition", TypeCategory.RESOURCE, "StructureDefinition"),
            ("boolean", TypeCategory.TYPE, "StructureDefinition"),
            ("Address", TypeCategory.TYPE, "StructureDefinition"),
            ("vitalsigns", TypeCategory.PROFILE, "StructureDefinition"),
            ("ServiceProfile", TypeCategory.PROFILE, "StructureDefinition"),
            ("patient-mothersMaidenName", TypeCategory.EXTENSION, "StructureDefinition"),
            ("eLTSSServiceModel", TypeCategory.LOGICAL, "StructureDefinition"),
            ("allergyintolerance-clinical", TypeCategory.VALUE_SET, "ValueSet"),
            ("w3c-provenance-activity-type", TypeCategory.CODE_SYSTEM, "CodeSystem"),
            ("MyIG", TypeCategory.IMPLEMENTATION_GUIDE, "ImplementationGuide"),
            ("MyPatient", TypeCategory.INSTANCE, "Patient"),
        ],
    )
    def test_finds_each_category(self, r4_store, item, category, resource_type):
        found = r4_store.fish_for_fhir(item, category)
        assert found is not None
        assert found["resourceType"] == resource_type

    def test_restricting_categories_excludes_others(self, r4_store):
        assert r4_store.fish_for_fhir("Condition", TypeCategory.PROFILE, TypeCategory.TYPE) is None
        assert r4_store.fish_for_fhir("mothersMaidenName", TypeCategory.PROFILE) is None
        assert r4_store.fish_for_fhir("mothersMaidenName", TypeCategory.EXTENSION)["fhirVersion"] == "4.0.1"

    def test_category_order_decides_between_shared_ids(self, r4_store):
        code_system_first = r4_store.fish_for_fhir(
            "allergyintolerance-clinical", TypeCategory.CODE_SYSTEM, TypeCategory.VALUE_SET
        )
        assert code_system_first["resourceType"] == "CodeSystem"
        value_set_first = r4_store.fish_for_fhir(
            "allergyintolerance-clinical", TypeCategory.VALUE_SET, TypeCategory.CODE_SYSTEM
        )
        assert value_set_first["resourceType"] == "ValueSet"

    def test_default_order_prefers_value_sets_over_code_systems(self, r4_store):
        assert r4_store.fish_for_fhir("AllergyIntoleranceClinicalStatusCodes")["resourceType"] == "ValueSet"

    def test_implementation_guides_need_to_be_asked_for(self, r4_store):
        assert r4_store.fish_for_fhir("MyIG") is None
        assert r4_store.fish_for_fhir("MyIG", TypeCategory.IMPLEMENTATION_GUIDE)["id"] == "MyIG"

    def test_unknown_item(self, r4_store):
        assert r4_store.fish_for_fhir("NotThere") is None

    def test_versioned_lookup(self, r4_store):
        assert r4_store.fish_for_fhir("Condition|4.0.1")["id"] == "Condition"
        assert r4_store.fish_for_fhir("http://hl7.org/fhir/StructureDefinition/Condition|4.0.1")["id"] == "Condition"
        assert r4_store.fish_for_fhir("Condition|1.0.0") is None

    def test_version_containing_separator(self, r4_store):
        found = r4_store.fish_for_fhir("SimpleProfile|1.0.0|a")
        assert found["version"] == "1.0.0|a"
        assert r4_store.fish_for_fhir("SimpleProfile|1.0.0") is None

    def test_unversioned_definition_never_matches_versioned_lookup(self, r4_store):
        assert r4_store.fish_for_fhir("SimpleProfileNoVersion")["id"] == "SimpleProfileNoVersion"
        assert r4_store.fish_for_fhir("SimpleProfileNoVersion|1.0.0") is None

    def test_returns_copies(self, r4_store):
        found = r4_store.fish_for_fhir("Condition")
        found["id"] = "Changed"
        found["kind"] = "logical"
        assert r4_store.fish_for_fhir("Condition")["id"] == "Condition"
        assert r4_store.all_resources()[0]["kind"] == "resource"

    def test_most_recently_added_wins(self):
        store = store_with("pkg", profile("Dup", "1.0.0"), profile("Dup", "2.0.0"))
        assert store.fish_for_fhir("Dup")["version"] == "2.0.0"
        assert store.fish_for_fhir("Dup|1.0.0")["version"] == "1.0.0"

    def test_id_is_checked_before_name(self):
        by_name = profile("Other", name="Target")
        by_id = profile("Target", name="Something")
        store = store_with("pkg", by_id, by_name)
        assert store.fish_for_fhir("Target")["id"] == "Target"


class TestFishingAcrossStores:
    def test_parent_wins_over_children(self):
        parent = store_with("parent", profile("Shared", "1.0.0"))
        parent.child_stores.append(store_with("child", profile("Shared", "2.0.0")))
        assert parent.fish_for_fhir("Shared")["version"] == "1.0.0"

    def test_children_are_searched(self):
        root = DefinitionStore()
        root.child_stores.append(store_with("child", profile("OnlyInChild")))
        assert root.fish_for_fhir("OnlyInChild")["id"] == "OnlyInChild"

    def test_siblings_before_grandchildren(self):
        first = store_with("first")
        first.child_stores.append(store_with("grandchild", profile("Shared", "grandchild")))
        second = store_with("second", profile("Shared", "sibling"))
        root = DefinitionStore()
        root.child_stores.extend([first, second])
        assert root.fish_for_fhir("Shared")["version"] == "sibling"

    def test_earlier_sibling_wins(self):
        root = DefinitionStore()
        root.child_stores.extend(
            [store_with("a", profile("Shared", "a")), store_with("b", profile("Shared", "b"))]
        )
        assert root.fish_for_fhir("Shared")["version"] == "a"

    def test_versioned_lookup_continues_into_children(self):
        parent = store_with("parent", profile("Shared", "1.0.0"))
        parent.child_stores.append(store_with("child", profile("Shared", "2.0.0")))
        assert parent.fish_for_fhir("Shared|2.0.0")["version"] == "2.0.0"


class TestFishForMetadata:
    def test_metadata(self, r4_store):
        metadata = r4_store.fish_for_metadata("vitalsigns")
        assert metadata.id == "vitalsigns"
        assert metadata.name == "observation-vitalsigns"
        assert metadata.sd_type == "Observation"
        assert metadata.url == "http://hl7.org/fhir/StructureDefinition/vitalsigns"
        assert metadata.parent == "http://hl7.org/fhir/StructureDefinition/Observation"
        assert metadata.abstract is False
        assert metadata.version == "4.0.1"
        assert metadata.resource_type == "StructureDefinition"

    def test_missing(self, r4_store):
        assert r4_store.fish_for_metadata("NotThere") is None


class TestAggregates:
    def test_counts(self, r4_store):
        assert len(r4_store.all_resources()) == 1
        assert len(r4_store.all_types()) == 2
        assert len(r4_store.all_profiles()) == 4
        assert len(r4_store.all_extensions()) == 1
        assert len(r4_store.all_logicals()) == 1
        assert len(r4_store.all_value_sets()) == 1
        assert len(r4_store.all_code_systems()) == 2
        assert len(r4_store.all_implementation_guides()) == 1
        assert len(r4_store.all_instances()) == 1
        assert r4_store.size() == 14

    def test_package_label(self, r4_store):
        assert r4_store.package == "r4-definitions"
        assert r4_store.all_packages() == ["r4-definitions"]
        assert r4_store.all_unsuccessful_package_loads() == []

    def test_package_json(self, r4_store):
        assert r4_store.get_package_json("r4-definitions")["name"] == "hl7.fhir.r4.core"
        assert r4_store.get_package_json("missing") is None
        assert [p["version"] for p in r4_store.all_package_jsons()] == ["4.0.1"]

    def test_aggregates_include_children(self):
        root = DefinitionStore()
        root.child_stores.extend(
            [
                store_with("a#1.0.0", profile("A")),
                store_with("b#1.0.0", profile("B"), {"resourceType": "ValueSet", "id": "vs"}),
            ]
        )
        assert sorted(p["id"] for p in root.all_profiles()) == ["A", "B"]
        assert root.size() == 3
        assert root.all_packages() == ["a#1.0.0", "b#1.0.0"]

    def test_filter_by_package(self):
        root = DefinitionStore()
        root.child_stores.extend(
            [store_with("a#1.0.0", profile("A")), store_with("b#1.0.0", profile("B"))]
        )
        assert [p["id"] for p in root.all_profiles("b#1.0.0")] == ["B"]
        assert root.size("a#1.0.0") == 1
        assert root.all_packages("a#1.0.0") == ["a#1.0.0"]
        assert root.all_profiles("c#1.0.0") == []

    def test_identical_subtrees_are_reported_once(self):
        child = store_with("a#1.0.0", profile("A", "1.0.0"), package_json={"name": "a"})
        root = DefinitionStore()
        root.child_stores.extend([child, copy.deepcopy(child)])
        assert len(root.all_profiles()) == 1
        assert root.size() == 1
        assert root.all_packages() == ["a#1.0.0"]
        assert len(root.all_package_jsons()) == 1

    def test_identical_subtrees_without_ids_are_reported_once(self):
        child = store_with("a#1.0.0", {"resourceType": "Basic"}, profile("A", "1.0.0"))
        root = DefinitionStore()
        root.child_stores.extend([child, copy.deepcopy(child)])
        assert root.size() == child.size() == 2
        assert len(root.all_instances()) == 1

    def test_non_object_records_are_skipped(self):
        store = DefinitionStore("pkg")
        assert store.add([1, 2]) is None
        assert store.add("text") is None
        assert store.size() == 0

    def test_same_definition_in_different_packages_is_kept(self):
        root = DefinitionStore()
        root.child_stores.extend(
            [store_with("a#1.0.0", profile("A", "1.0.0")), store_with("b#1.0.0", profile("A", "1.0.0"))]
        )
        assert len(root.all_profiles()) == 2

    def test_unsuccessful_loads(self):
        failed = DefinitionStore("broken#1.0.0")
        failed.unsuccessful_package_load = True
        root = DefinitionStore()
        root.child_stores.extend([store_with("a#1.0.0", profile("A")), failed])
        assert root.all_packages() == ["a#1.0.0"]
        assert root.all_unsuccessful_package_loads() == ["broken#1.0.0"]

    def test_empty_store(self):
        store = DefinitionStore()
        assert store.size() == 0
        assert store.all_packages() == []
        assert store.fish_for_fhir("anything") is None

    def test_records_without_resource_type_are_skipped(self):
        store = DefinitionStore("pkg")
        assert store.add({"name": "not a definition"}) is None
        assert store.size() == 0
