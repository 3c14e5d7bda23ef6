from pathlib import Path

from dbgraph_core.pathing import canonicalize_repo_relative_path, relative_to_root


def test_canonicalize_repo_relative_path_equivalence() -> None:
    expected = "sales/Order.sql"
    assert canonicalize_repo_relative_path("./sales/Order.sql") == expected
    assert canonicalize_repo_relative_path("sales/Order.sql") == expected
    assert canonicalize_repo_relative_path(r"sales\Order.sql") == expected
    assert canonicalize_repo_relative_path("/sales//Order.sql") == expected


def test_canonicalize_root() -> None:
    assert canonicalize_repo_relative_path(".") == ""
    assert canonicalize_repo_relative_path("./") == ""


def test_relative_to_root(tmp_path: Path) -> None:
    path = tmp_path / "src" / "Models" / "Product.cs"
    assert relative_to_root(path, tmp_path / "src") == "Models/Product.cs"
    assert relative_to_root(path, tmp_path / "other") == canonicalize_repo_relative_path(
        str(path)
    )
