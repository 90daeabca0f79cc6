"""
Unit tests for blob storage
"""
import io

import pytest
from botocore.exceptions import ClientError

from csvinsight.config import Settings
from csvinsight.errors import StorageError
from csvinsight.services.storage import (
    LocalBlobStore,
    S3BlobStore,
    build_blob_store,
    cleaned_csv_path,
    raw_csv_path,
)


class InMemoryS3:
    """Just enough of the boto3 S3 client for the blob store"""
    
    def __init__(self):
        self.objects = {}
    
    def put_object(self, Bucket, Key, Body, ContentType=None):
        self.objects[(Bucket, Key)] = (Body, ContentType)
        return {}
    
    def get_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "Not Found"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[(Bucket, Key)][0])}


class TestPaths:
    
    def test_layout(self):
        assert raw_csv_path("abc", "sales.csv") == "raw/abc/sales.csv"
        assert cleaned_csv_path("abc") == "cleaned/abc/cleaned_data.csv"


class TestLocalBlobStore:
    """Test suite for the filesystem store"""
    
    def test_save_and_load(self, tmp_path):
        store = LocalBlobStore(str(tmp_path))
        
        store.save("raw/abc/data.csv", b"A,B\n1,2\n")
        
        assert store.load("raw/abc/data.csv") == b"A,B\n1,2\n"
        assert (tmp_path / "raw" / "abc" / "data.csv").exists()
    
    def test_missing_blob(self, tmp_path):
        store = LocalBlobStore(str(tmp_path))
        
        with pytest.raises(StorageError):
            store.load("raw/none/data.csv")
    
    @pytest.mark.parametrize("path", ["../escape.csv", "raw/../../escape.csv", "/etc/passwd"])
    def test_rejects_paths_outside_root(self, tmp_path, path):
        store = LocalBlobStore(str(tmp_path))
        
        with pytest.raises(StorageError):
            store.save(path, b"x")


class TestS3BlobStore:
    """Test suite for the S3 store against an in-memory client"""
    
    def test_save_and_load(self):
        client = InMemoryS3()
        store = S3BlobStore(bucket="uploads", client=client)
        
        store.save("cleaned/abc/cleaned_data.csv", b"A\n1\n")
        
        assert store.load("cleaned/abc/cleaned_data.csv") == b"A\n1\n"
        assert client.objects[("uploads", "cleaned/abc/cleaned_data.csv")][1] == "text/csv"
    
    def test_client_error_becomes_storage_error(self):
        store = S3BlobStore(bucket="uploads", client=InMemoryS3())
        
        with pytest.raises(StorageError) as excinfo:
            store.load("raw/missing.csv")
        
        assert "raw/missing.csv" in str(excinfo.value)
    
    def test_bucket_required(self):
        with pytest.raises(StorageError):
            S3BlobStore(bucket=None, client=InMemoryS3())


class TestBuildBlobStore:
    
    def test_local_backend(self, tmp_path):
        settings = Settings(_env_file=None, storage_backend="local", storage_root=str(tmp_path))
        
        assert isinstance(build_blob_store(settings), LocalBlobStore)
    
    def test_unknown_backend(self):
        settings = Settings(_env_file=None, storage_backend="ftp")
        
        with pytest.raises(StorageError):
            build_blob_store(settings)
