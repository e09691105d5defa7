"""Tests for the field-path resolver."""

import pytest

from infragraph.discovery.fieldpath import (
    ArrayProject,
    FieldProject,
    TagLookup,
    extract_resource_id,
    first_raw_value,
    first_value,
    parse_field_path,
    resolve_field_path,
    resolve_field_values,
    validate_field_path,
)


class TestParseFieldPath:
    """Tests for path parsing."""

    def test_simple_projection(self):
        """Test dotted names parse to projections."""
        assert parse_field_path("a.b") == (FieldProject("a"), FieldProject("b"))

    def test_array_projection_is_fused(self):
        """Test name[].sub parses to a single array projection."""
        assert parse_field_path("A.B[].C") == (FieldProject("A"), ArrayProject("B", "C"))

    def test_tag_lookup(self):
        """Test name[Key] parses to a tag lookup."""
        assert parse_field_path("Tags[Name]") == (TagLookup("Tags", "Name"),)

    def test_malformed_segment_raises(self):
        """Test an empty segment is rejected."""
        with pytest.raises(ValueError):
            parse_field_path("a..b")

    @pytest.mark.parametrize("path", ["a..b", "", ".a", "a[b", "a]b", None])
    def test_validate_rejects_malformed(self, path):
        """Test validation rejects empty and malformed paths."""
        with pytest.raises(ValueError):
            validate_field_path(path)

    def test_validate_accepts_table_paths(self):
        """Test every path shape used by the tables validates."""
        for path in ("VpcId", "Reservations[].Instances[]", "Tags[Name]", "A.B[].C.D"):
            validate_field_path(path)


class TestResolveFieldPath:
    """Tests for path resolution."""

    def test_nested_field(self):
        """Test resolving a nested scalar."""
        assert resolve_field_path({"a": {"b": "x"}}, "a.b") == ["x"]

    def test_array_projection(self):
        """Test projecting a field from every array element."""
        root = {"A": {"B": [{"C": 1}, {"C": 2}]}}
        assert resolve_field_path(root, "A.B[].C") == [1, 2]

    def test_array_projection_skips_missing(self):
        """Test elements lacking the field are dropped."""
        root = {"A": [{"C": 1}, {}, {"C": None}, {"C": 3}]}
        assert resolve_field_path(root, "A[].C") == [1, 3]

    def test_array_expand_of_scalars(self):
        """Test expanding an array of scalars."""
        assert resolve_field_path({"ids": ["sg-1", "sg-2"]}, "ids[]") == ["sg-1", "sg-2"]

    def test_tag_lookup(self):
        """Test Key/Value tag lookup."""
        root = {"Tags": [{"Key": "Env", "Value": "prod"}, {"Key": "Name", "Value": "web"}]}
        assert resolve_field_path(root, "Tags[Name]") == ["web"]

    def test_tag_lookup_lowercase_keys(self):
        """Test key/value records with lowercase keys."""
        root = {"tags": [{"key": "Name", "value": "db"}]}
        assert resolve_field_path(root, "tags[Name]") == ["db"]

    def test_missing_path_is_empty(self):
        """Test absent fields resolve to an empty list, never an error."""
        assert resolve_field_path({"a": 1}, "b.c") == []

    @pytest.mark.parametrize("path", ["a..b", ".a", "a[b", "a]b"])
    def test_malformed_path_resolves_to_nothing(self, path):
        """Test resolution never raises, even for malformed paths."""
        root = {"a": {"b": 1}}
        assert resolve_field_path(root, path) == []
        assert resolve_field_values(root, path) == []
        assert first_value(root, path, default="d") == "d"
        assert first_raw_value(root, path) is None

    def test_none_root(self):
        """Test a None root resolves to nothing."""
        assert resolve_field_path(None, "a") == []

    def test_non_object_intermediate(self):
        """Test projecting through a scalar yields nothing."""
        assert resolve_field_path({"a": "text"}, "a.b") == []

    def test_objects_are_not_returned(self):
        """Test only scalars are returned by resolve_field_path."""
        assert resolve_field_path({"a": {"b": {"c": 1}}}, "a.b") == []

    def test_first_value_default(self):
        """Test first_value falls back to the default."""
        assert first_value({}, "x", default="d") == "d"
        assert first_value({"x": [5, 6]}, "x[]") == 5

    def test_first_raw_value_returns_objects(self):
        """Test first_raw_value returns non-scalar values and the root for empty paths."""
        root = {"a": {"b": 1}}
        assert first_raw_value(root, "a") == {"b": 1}
        assert first_raw_value(root, "") is root


class TestExtractResourceId:
    """Tests for identifier canonicalization."""

    @pytest.mark.parametrize("identifier,expected", [
        ("arn:aws:ec2:us-east-1:123456789012:instance/i-abc", "i-abc"),
        ("arn:aws:iam::123456789012:role/app/deployer", "deployer"),
        ("arn:aws:lambda:us-east-1:123456789012:function:my-fn", "my-fn"),
        ("arn:aws:s3:::my-bucket", "my-bucket"),
        ("https://www.googleapis.com/compute/v1/projects/p/zones/us-central1-a/instances/vm-1", "vm-1"),
        ("/subscriptions/s/resourceGroups/rg/providers/Microsoft.Compute/virtualMachines/vm1", "vm1"),
        ("vpc-123", "vpc-123"),
    ])
    def test_extract(self, identifier, expected):
        """Test ARNs, URLs, paths and bare ids canonicalize to the short id."""
        assert extract_resource_id(identifier) == expected

    def test_empty_string(self):
        """Test an empty identifier stays empty."""
        assert extract_resource_id("") == ""
