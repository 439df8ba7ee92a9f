from models import Booking, BookingStatus, WorkshopStatus, db

from conftest import WALLET_1, WALLET_2, login


def complete(client, workshop_id, **body):
    return client.post(f'/api/workshops/{workshop_id}/complete', json=body)


def test_requires_login(client, seed):
    resp = complete(client, seed['workshop'].id, participated=[])
    assert resp.status_code == 401
    assert resp.get_json()['error'] == 'Unauthorized'


def test_missing_workshop_is_not_found(client, seed):
    login(client, 'host-1')
    resp = complete(client, 9999, participated=[])
    assert resp.status_code == 404


def test_other_user_cannot_complete(client, seed, fake_chain):
    publisher, minter = fake_chain
    login(client, 'learner-1')
    resp = complete(client, seed['workshop'].id, participated=[seed['bookings']['learner-1'].id])

    assert resp.status_code == 403
    assert publisher.published == []
    assert all(b.status == BookingStatus.CONFIRMED for b in seed['bookings'].values())


def test_both_participants_minted(client, seed, fake_chain):
    publisher, minter = fake_chain
    b1 = seed['bookings']['learner-1']
    b2 = seed['bookings']['learner-2']
    login(client, 'host-1')

    resp = complete(client, seed['workshop'].id, participated=[b1.id, b2.id], feedback='Great group')
    body = resp.get_json()

    assert resp.status_code == 200, body
    assert body['success'] is True
    assert len(body['minted']) == 2
    assert body['failed'] == []

    assert b1.status == BookingStatus.COMPLETED
    assert b2.status == BookingStatus.COMPLETED
    assert b1.transaction_hash and b2.transaction_hash
    assert b1.transaction_hash != b2.transaction_hash
    assert b1.token_metadata_uri != b2.token_metadata_uri
    assert b1.host_feedback == 'Great group'
    assert b1.learner_showed_up is True and b1.learner_used_tools is True
    assert sorted(wallet for wallet, _ in minter.minted) == sorted([WALLET_1, WALLET_2])


def test_metadata_uri_round_trips_to_booking(client, seed, fake_chain):
    b1 = seed['bookings']['learner-1']
    login(client, 'host-1')

    body = complete(client, seed['workshop'].id, participated=[b1.id]).get_json()
    minted = body['minted'][0]

    assert minted['token_metadata_uri'] == f'ipfs://{minted["cid"]}'
    stored = db.session.get(Booking, b1.id)
    assert stored.token_metadata_uri == minted['token_metadata_uri']
    assert stored.transaction_hash == minted['transaction_hash']


def test_non_participants_completed_without_record(client, seed, fake_chain):
    publisher, minter = fake_chain
    b1 = seed['bookings']['learner-1']
    b2 = seed['bookings']['learner-2']
    login(client, 'host-1')

    body = complete(client, seed['workshop'].id, participated=[b1.id]).get_json()

    assert [r.booking_id for r in publisher.published] == [b1.id]
    assert b2.status == BookingStatus.COMPLETED
    assert b2.transaction_hash is None
    assert b2.learner_showed_up is False
    assert {'booking_id': b2.id, 'reason': 'not_participated'} in body['skipped']


def test_learners_without_usable_wallet_never_minted(client, seed, fake_chain):
    publisher, minter = fake_chain
    b3 = seed['bookings']['learner-3']
    b4 = seed['bookings']['learner-4']
    login(client, 'host-1')

    body = complete(client, seed['workshop'].id, participated=[b3.id, b4.id]).get_json()

    assert minter.minted == []
    assert publisher.published == []
    assert {'booking_id': b3.id, 'reason': 'no_wallet'} in body['skipped']
    assert {'booking_id': b4.id, 'reason': 'wallet_opted_out'} in body['skipped']
    assert b3.status == BookingStatus.COMPLETED
    assert b4.status == BookingStatus.COMPLETED


def test_mint_failure_leaves_booking_confirmed(client, seed, fake_chain):
    publisher, minter = fake_chain
    minter.fail_for.add(WALLET_1)
    b1 = seed['bookings']['learner-1']
    b2 = seed['bookings']['learner-2']
    login(client, 'host-1')

    resp = complete(client, seed['workshop'].id, participated=[b1.id, b2.id])
    body = resp.get_json()

    assert resp.status_code == 500
    assert body['error_type'] == 'MintError'
    assert body['error'].startswith('Failed to mint Proof of Skill tokens:')
    assert [f['booking_id'] for f in body['details']['failed']] == [b1.id]
    assert body['details']['failed'][0]['stage'] == 'mint'

    # the failed learner stays confirmed and can be completed again later
    assert b1.status == BookingStatus.CONFIRMED
    assert b1.transaction_hash is None
    assert b1.learner_showed_up is None
    # the learner minted in the same batch keeps their token
    assert b2.status == BookingStatus.COMPLETED
    assert b2.transaction_hash is not None
    assert seed['workshop'].status == WorkshopStatus.ACTIVE


def test_upload_failure_skips_mint(client, seed, fake_chain):
    publisher, minter = fake_chain
    b1 = seed['bookings']['learner-1']
    publisher.fail_for.add(b1.id)
    login(client, 'host-1')

    resp = complete(client, seed['workshop'].id, participated=[b1.id])
    body = resp.get_json()

    assert resp.status_code == 500
    assert body['error_type'] == 'UploadError'
    assert body['details']['failed'][0]['stage'] == 'upload'
    assert minter.minted == []
    assert b1.status == BookingStatus.CONFIRMED
    assert b1.token_metadata_uri is None
    assert b1.transaction_hash is None


def test_failed_learner_can_be_completed_on_rerun(client, seed, fake_chain):
    publisher, minter = fake_chain
    minter.fail_for.add(WALLET_1)
    b1 = seed['bookings']['learner-1']
    login(client, 'host-1')

    assert complete(client, seed['workshop'].id, participated=[b1.id]).status_code == 500

    minter.fail_for.clear()
    resp = complete(client, seed['workshop'].id, participated=[b1.id])

    assert resp.status_code == 200
    assert b1.status == BookingStatus.COMPLETED
    assert b1.transaction_hash is not None
    assert seed['workshop'].status == WorkshopStatus.COMPLETED


def test_probe_failure_aborts_before_any_write(client, seed, fake_chain):
    publisher, minter = fake_chain
    minter.probe_error = 'Contract connection failed: connection refused'
    login(client, 'host-1')

    resp = complete(client, seed['workshop'].id, participated=[seed['bookings']['learner-1'].id])

    assert resp.status_code == 500
    assert resp.get_json()['error_type'] == 'MintError'
    assert publisher.published == []
    assert all(b.status == BookingStatus.CONFIRMED for b in seed['bookings'].values())


def test_second_completion_is_rejected(client, seed, fake_chain):
    publisher, minter = fake_chain
    b1 = seed['bookings']['learner-1']
    login(client, 'host-1')

    assert complete(client, seed['workshop'].id, participated=[b1.id]).status_code == 200
    assert seed['workshop'].status == WorkshopStatus.COMPLETED
    assert seed['host_profile'].total_sessions == 1

    resp = complete(client, seed['workshop'].id, participated=[b1.id])
    assert resp.status_code == 409
    assert resp.get_json()['error_type'] == 'Conflict'
    assert len(minter.minted) == 1


def test_unknown_booking_id_rejected(client, seed, fake_chain):
    login(client, 'host-1')
    resp = complete(client, seed['workshop'].id, participated=[424242])
    assert resp.status_code == 400
    assert resp.get_json()['error_type'] == 'ValidationError'


def test_form_encoded_completion(client, seed, fake_chain):
    publisher, minter = fake_chain
    b1 = seed['bookings']['learner-1']
    b2 = seed['bookings']['learner-2']
    login(client, 'host-1')

    resp = client.post(
        f'/api/workshops/{seed["workshop"].id}/complete',
        data={'participated': [str(b1.id), str(b2.id)], 'usedTools': [str(b2.id)], 'feedback': 'ok'},
    )

    assert resp.status_code == 200
    assert b1.learner_showed_up is False
    assert b1.learner_used_tools is False
    assert b2.learner_showed_up is False
    assert b2.learner_used_tools is True
    assert len(minter.minted) == 2


def test_form_without_flag_fields_records_no_flags(client, seed, fake_chain):
    # unticked checkboxes are left out of a form post entirely
    b1 = seed['bookings']['learner-1']
    login(client, 'host-1')

    resp = client.post(f'/api/workshops/{seed["workshop"].id}/complete', data={'participated': [str(b1.id)]})

    assert resp.status_code == 200
    assert b1.status == BookingStatus.COMPLETED
    assert b1.learner_showed_up is False
    assert b1.learner_used_tools is False


def test_json_without_flag_keys_defaults_to_participated(client, seed, fake_chain):
    b1 = seed['bookings']['learner-1']
    login(client, 'host-1')

    resp = complete(client, seed['workshop'].id, participated=[b1.id])

    assert resp.status_code == 200
    assert b1.learner_showed_up is True
    assert b1.learner_used_tools is True


def test_non_object_json_body_is_rejected(client, seed, fake_chain):
    publisher, minter = fake_chain
    login(client, 'host-1')

    resp = client.post(f'/api/workshops/{seed["workshop"].id}/complete', json=[1, 2])

    assert resp.status_code == 400
    assert resp.get_json() == {'error': 'Request body must be a JSON object', 'error_type': 'ValidationError'}
    assert seed['workshop'].status == WorkshopStatus.ACTIVE
    assert minter.minted == []


def test_no_eligible_learners_needs_no_chain_config(client, seed):
    # no PROOF_CONTEXT_FACTORY and no chain settings configured
    login(client, 'host-1')
    resp = complete(client, seed['workshop'].id, participated=[seed['bookings']['learner-3'].id])

    assert resp.status_code == 200
    assert seed['workshop'].status == WorkshopStatus.COMPLETED


def test_missing_chain_config_is_server_error(client, seed):
    login(client, 'host-1')
    resp = complete(client, seed['workshop'].id, participated=[seed['bookings']['learner-1'].id])

    assert resp.status_code == 500
    assert resp.get_json() == {'error': 'Server configuration error', 'error_type': 'ConfigurationError'}
    assert seed['bookings']['learner-1'].status == BookingStatus.CONFIRMED
