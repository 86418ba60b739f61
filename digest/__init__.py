from digest.digest_queue import DigestQueue, format_digest
