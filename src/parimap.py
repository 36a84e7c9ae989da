# http://pyrocko.org - GPLv3
#
# The Pyrocko Developers, 21st Century
# ---|P------/S----------~Lg----------

'''
Parallel :py:func:`map` implementation based on :py:mod:`threading`.

Results are yielded in input order. Most of the work done with it in
anisoray happens inside :py:mod:`numpy`, which releases the interpreter lock
for the heavy array operations.
'''

import os
import queue
import logging
import threading


logger = logging.getLogger('anisoray.parimap')


def worker(q_in, q_out, function):
    while True:
        i, args = q_in.get()
        if i is None:
            break

        res, exception = None, None
        try:
            res = function(*args)
        except Exception as e:
            logger.debug('Exception in worker thread: %s', e)
            exception = e

        q_out.put((i, res, exception))


def parimap(function, *iterables, **kwargs):
    '''
    Apply ``function`` to the items of ``iterables`` using a pool of threads.

    :param nthreads: number of worker threads (default: number of CPUs),
        with ``nthreads=1``, everything is done in the calling thread.

    The first exception raised by ``function`` is re-raised in the caller
    after all preceding results have been yielded.
    '''

    assert all(k in ('nthreads',) for k in kwargs.keys())

    nthreads = kwargs.get('nthreads', None)

    if nthreads == 1:
        iterables = list(map(iter, iterables))
        while True:
            args = []
            for it in iterables:
                try:
                    args.append(next(it))
                except StopIteration:
                    return

            yield function(*args)

    if nthreads is None:
        nthreads = os.cpu_count() or 1

    q_in = queue.Queue(1)
    q_out = queue.Queue()

    threads = []

    results = []
    nrun = 0
    nwritten = 0
    iout = 0
    all_written = False
    error_ahead = False
    iterables = list(map(iter, iterables))

    def stop_workers():
        for _ in threads:
            q_in.put((None, None))

    try:
        while True:
            if nrun < nthreads and not all_written and not error_ahead:
                args = []
                for it in iterables:
                    try:
                        args.append(next(it))
                    except StopIteration:
                        pass

                if len(args) == len(iterables):
                    if len(threads) < nrun + 1:
                        t = threading.Thread(
                            target=worker,
                            args=(q_in, q_out, function))
                        t.daemon = True
                        t.start()
                        threads.append(t)

                    q_in.put((nwritten, args))
                    nwritten += 1
                    nrun += 1
                else:
                    all_written = True

            try:
                while nrun > 0:
                    if nrun < nthreads and not all_written \
                            and not error_ahead:
                        results.append(q_out.get_nowait())
                    else:
                        results.append(q_out.get())

                    nrun -= 1

            except queue.Empty:
                pass

            if results:
                results.sort(key=lambda x: x[0])
                # check for error ahead to prevent further enqueuing
                if any(exc for (_, _, exc) in results):
                    error_ahead = True

                while results:
                    (i, r, exc) = results[0]
                    if i == iout:
                        results.pop(0)
                        if exc is not None:
                            raise exc
                        else:
                            yield r

                        iout += 1
                    else:
                        break

            if (all_written or error_ahead) and nrun == 0 and not results:
                break

    finally:
        stop_workers()

    for t in threads:
        t.join()


__all__ = ['parimap']
