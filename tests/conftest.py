import pytest

from dal.image_dal import ImageDAL
from utils.database_init import AsyncDatabaseInitializer


@pytest.fixture
def db_initializer(tmp_path):
    return AsyncDatabaseInitializer(tmp_path / "app.db")


@pytest.fixture
def image_dal(db_initializer):
    return ImageDAL(db_initializer)
