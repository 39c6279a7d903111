"""
Process Claim Queue Handler.
Triggered by the ClaimQueue table's DynamoDB Stream.

Each new queue entry wakes a processor for its work unit. The processor
holds a per-unit lease, so overlapping invocations for the same unit
return immediately and the lease holder drains the queue.
"""
from stitchline.claim_queue import PROCESSOR_KEY
from stitchline.dynamo import deserialize_image
from stitchline.logging import logger
from stitchline.services import get_services


def work_ids_from_records(records):
    """Distinct work ids with newly inserted queue entries, in arrival order."""
    work_ids = []
    for record in records:
        if record.get('eventName') != 'INSERT':
            continue
        image = deserialize_image(record.get('dynamodb', {}).get('NewImage'))
        if not image or image.get('queueId') == PROCESSOR_KEY:
            continue
        if image.get('workId') and image['workId'] not in work_ids:
            work_ids.append(image['workId'])
    return work_ids


def handler(event, context):
    records = event.get('Records', [])
    work_ids = work_ids_from_records(records)
    logger.info(f"Processing {len(records)} stream records for {len(work_ids)} work unit(s)")

    queue = get_services().claim_queue
    results = []
    failed = []
    for work_id in work_ids:
        try:
            results.append(queue.process(work_id))
        except Exception as e:
            logger.error(f"Error processing claim queue for {work_id}: {str(e)}")
            failed.append(work_id)

    # Raising makes Lambda retry the batch; entries are still pending
    if failed:
        raise RuntimeError(f"Claim queue processing failed for: {', '.join(failed)}")

    return {'processed': len(results), 'results': results}
