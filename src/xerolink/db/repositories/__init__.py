from .sync_record_repo import SyncRecordRepository


__all__ = ["SyncRecordRepository"]
