# Filename: evoting/storage.py
# Path-addressed blob storage on the local filesystem.

import json
import logging
import os

logger = logging.getLogger(__name__)


class BlobStore:
    def __init__(self, root, public_url="/storage"):
        self.root = os.path.abspath(root)
        self.public_url = public_url.rstrip("/")
        os.makedirs(self.root, exist_ok=True)

    def _path(self, bucket, path):
        full = os.path.abspath(os.path.join(self.root, bucket, path))
        if not full.startswith(self.root + os.sep):
            raise ValueError(f"Invalid storage path: {bucket}/{path}")
        return full

    def upload(self, bucket, path, data, upsert=True):
        """Write `data` (bytes) to bucket/path and return the stored key."""
        full = self._path(bucket, path)
        if not upsert and os.path.exists(full):
            raise FileExistsError(f"{bucket}/{path} already exists")
        os.makedirs(os.path.dirname(full), exist_ok=True)
        tmp = full + ".part"
        with open(tmp, "wb") as f:
            f.write(data)
        os.replace(tmp, full)
        logger.debug("Stored %s/%s (%d bytes)", bucket, path, len(data))
        return f"{bucket}/{path}"

    def upload_json(self, bucket, path, payload):
        return self.upload(bucket, path, json.dumps(payload, indent=2).encode("utf-8"))

    def download(self, bucket, path):
        with open(self._path(bucket, path), "rb") as f:
            return f.read()

    def public_url_for(self, bucket, path):
        return f"{self.public_url}/{bucket}/{path}"
